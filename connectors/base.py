"""
BaseProvider — the capability contract every channel provider satisfies.

Mandatory surface
-----------------
* ``identifier`` / ``display_name`` / ``scopes``
* ``generate_auth_url(external_context)`` → ``AuthUrl``
* ``authenticate(params, external_context)`` → ``AuthTokenDetails`` or an
  error string
* named operations, declared with ``@operation`` and dispatched through
  ``get_operation(name)``

Optional capabilities are separate mixins (``SupportsRefresh``,
``SupportsReconnect``, …).  Callers test membership with ``isinstance`` and
never probe for attributes.
"""

from __future__ import annotations

import base64
import hashlib
import inspect
import json
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

import httpx

from config.settings import config
from connectors.encryption import decrypt_secret
from connectors.errors import RefreshTokenRequired
from connectors.schemas import (
    AuthenticateParams,
    AuthTokenDetails,
    AuthUrl,
    CredentialRecord,
    CustomField,
    RefreshResult,
)

logger = logging.getLogger(__name__)

AuthResult = Union[AuthTokenDetails, str]


def operation(func: Optional[Callable] = None, *, name: Optional[str] = None) -> Callable:
    """
    Decorator that tags a provider coroutine as an invocable operation.

    Operations are called as ``op(token, data, external_account_id, credential)``.
    """

    def decorator(fn: Callable) -> Callable:
        fn.is_operation = True  # type: ignore[attr-defined]
        fn.operation_name = name or fn.__name__  # type: ignore[attr-defined]
        return fn

    if func is not None:
        return decorator(func)
    return decorator


class BaseProvider(ABC):
    """Abstract base for all channel providers."""

    one_time_token: bool = False
    refresh_wait: bool = False
    is_between_steps: bool = False

    _operations: Dict[str, str] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        table: Dict[str, str] = {}
        for klass in reversed(cls.__mro__):
            for attr, value in vars(klass).items():
                if getattr(value, "is_operation", False):
                    table[value.operation_name] = attr
        cls._operations = table

    # ── Identity ────────────────────────────────────────────────────────

    @property
    @abstractmethod
    def identifier(self) -> str:
        """Unique slug: 'github', 'mastodon', 'bluesky', …"""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    def scopes(self) -> List[str]:
        return []

    def is_configured(self) -> bool:
        """Return True if client ids / secrets this provider needs are set."""
        return True

    # ── Authorization ───────────────────────────────────────────────────

    @abstractmethod
    async def generate_auth_url(
        self, external_context: Optional[Dict[str, Any]] = None
    ) -> AuthUrl:
        ...

    @abstractmethod
    async def authenticate(
        self,
        params: AuthenticateParams,
        external_context: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        """
        Finish the handshake.

        Returns
        -------
        ``AuthTokenDetails`` on success, or a human-readable error string
        when the provider refused (missing scopes, bad API key, …).
        """
        ...

    # ── Operations ──────────────────────────────────────────────────────

    @classmethod
    def operation_names(cls) -> List[str]:
        return sorted(cls._operations)

    def get_operation(self, name: str) -> Optional[Callable]:
        attr = self._operations.get(name)
        if attr is None:
            return None
        return getattr(self, attr)

    def capabilities(self) -> FrozenSet[str]:
        caps = {
            cap
            for cap, iface in CAPABILITIES.items()
            if isinstance(self, iface)
        }
        if self.one_time_token:
            caps.add("one_time_token")
        if self.refresh_wait:
            caps.add("refresh_wait")
        return frozenset(caps)

    # ── Helpers ─────────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=config.provider_timeout_seconds)

    @staticmethod
    def _check(resp: httpx.Response) -> httpx.Response:
        """Raise ``RefreshTokenRequired`` on 401, ``HTTPStatusError`` otherwise."""
        if resp.status_code == 401:
            raise RefreshTokenRequired()
        resp.raise_for_status()
        return resp

    @staticmethod
    def instance_details(credential: CredentialRecord) -> Dict[str, Any]:
        """Decrypted external context or custom fields captured at connect time."""
        if not credential.custom_instance_details:
            return {}
        return json.loads(decrypt_secret(credential.custom_instance_details))

    @staticmethod
    def make_state() -> str:
        return secrets.token_urlsafe(24)

    @staticmethod
    def make_code_verifier() -> str:
        return secrets.token_urlsafe(64)[:96]

    @staticmethod
    def code_challenge(verifier: str) -> str:
        digest = hashlib.sha256(verifier.encode()).digest()
        return base64.urlsafe_b64encode(digest).decode().rstrip("=")


# ═══════════════════════════════════════════════════════════════════════════════
# Optional capabilities
# ═══════════════════════════════════════════════════════════════════════════════


class SupportsRefresh(ABC):
    @abstractmethod
    async def refresh_token(
        self, refresh_token: str, credential: Optional[CredentialRecord] = None
    ) -> RefreshResult:
        """
        Return a result with an empty ``access_token`` when refresh is refused.

        ``credential`` is passed for providers whose refresh endpoint lives on
        a per-channel host.
        """
        ...


class SupportsReconnect(ABC):
    @abstractmethod
    async def reconnect(
        self, external_account_id: str, reconnect_target: str, access_token: str
    ) -> AuthResult:
        """Re-derive credentials for an existing channel after a fresh handshake."""
        ...


class SupportsCustomFields(ABC):
    """
    The user types credentials into a form instead of visiting an OAuth page.
    The "code" submitted to completion is base64-encoded JSON of the fields.
    """

    @abstractmethod
    def custom_fields(self) -> List[CustomField]:
        ...


class SupportsExternalContext(ABC):
    """Self-hosted services: the user supplies the instance URL up front."""

    @abstractmethod
    async def resolve_external_context(self, external_url: str) -> Dict[str, Any]:
        ...


class SupportsChangeNickname(ABC):
    @abstractmethod
    async def change_nickname(self, credential: CredentialRecord, name: str) -> str:
        """Return the name the provider actually stored."""
        ...


class SupportsChangeProfilePicture(ABC):
    @abstractmethod
    async def change_profile_picture(
        self, credential: CredentialRecord, picture_url: str
    ) -> str:
        """Return the URL of the new picture."""
        ...


CAPABILITIES: Dict[str, type] = {
    "custom_fields": SupportsCustomFields,
    "external_context": SupportsExternalContext,
    "reconnect": SupportsReconnect,
    "refresh": SupportsRefresh,
    "change_nickname": SupportsChangeNickname,
    "change_profile_picture": SupportsChangeProfilePicture,
}


def is_operation_callable(fn: Callable) -> bool:
    return inspect.iscoroutinefunction(fn)

