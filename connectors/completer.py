"""
Connection completer — second half of the connect handshake.

    state consumed → authenticating → authenticated | rejected → persisted

The state token is taken (read + deleted atomically) before the provider is
contacted, so a replayed or concurrent completion observes nothing and fails
with ``InvalidState``.  Provider refusals and faults are folded into an error
string and surfaced as ``InsufficientAuthorization``; nothing is written
unless every check passes.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from typing import Optional, Union

from config.settings import config
from connectors.base import BaseProvider, SupportsCustomFields, SupportsReconnect
from connectors.encryption import encrypt_secret
from connectors.errors import (
    InsufficientAuthorization,
    InvalidState,
    ProviderNotAllowed,
    TrialAbuseBlocked,
)
from connectors.registry import ProviderRegistry
from connectors.repository import CredentialRepository
from connectors.schemas import (
    NO_CODE_VERIFIER,
    AuthenticateParams,
    AuthorizationState,
    AuthTokenDetails,
    CredentialRecord,
    CredentialUpsert,
)
from connectors.state_store import StateStore

logger = logging.getLogger(__name__)

AuthOutcome = Union[AuthTokenDetails, str]


def derive_display_name(name: str, username: str, external_account_id: str) -> str:
    """Fallback channel name when the provider did not return one."""
    if name:
        return name
    if username:
        return username.split(".")[0] or username
    return f"Channel_{str(external_account_id)[:8]}"


class ConnectionCompleter:
    def __init__(
        self,
        registry: ProviderRegistry,
        state_store: StateStore,
        repository: CredentialRepository,
        *,
        billing_enabled: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._state_store = state_store
        self._repository = repository
        self._billing_enabled = (
            config.billing_enabled if billing_enabled is None else billing_enabled
        )
        self._timeout = timeout_seconds or config.provider_timeout_seconds

    async def complete_connection(
        self,
        org_id: str,
        provider_id: str,
        state: str,
        code: str,
        refresh: Optional[str] = None,
        timezone: Optional[int] = None,
    ) -> CredentialRecord:
        """
        Finish the handshake and persist the resulting channel.

        Raises
        ------
        ProviderNotAllowed        – provider not registered / not allowed
        InvalidState              – state token missing, expired or replayed
        InsufficientAuthorization – provider refused, no account id, or the
                                    account differs from the channel being refreshed
        TrialAbuseBlocked         – trialing org reconnecting a known account
        """
        logger.info("Connecting %s for org %s", provider_id, org_id)

        if not self._registry.is_allowed(provider_id):
            logger.error("Provider not allowed: %s", provider_id)
            raise ProviderNotAllowed(provider_id)
        provider = self._registry.resolve(provider_id)
        custom_fields = isinstance(provider, SupportsCustomFields)

        # 1. Consume state
        stored = await self._state_store.take(state)
        if stored is None:
            if not custom_fields:
                logger.error("Invalid state %s for %s", state, provider_id)
                raise InvalidState()
            stored = AuthorizationState()
        code_verifier = NO_CODE_VERIFIER if custom_fields else stored.code_verifier
        reconnect_target = stored.reconnect_target or refresh

        # 2-3. Authenticate and normalize
        outcome = await self._authenticate(
            provider,
            AuthenticateParams(code=code, code_verifier=code_verifier, refresh=refresh),
            stored,
            reconnect_target,
        )

        # 4. Reject
        if isinstance(outcome, str):
            logger.error("Authentication error for %s: %s", provider_id, outcome)
            raise InsufficientAuthorization(outcome)
        if not outcome.id:
            logger.error("No account id returned from %s", provider_id)
            raise InsufficientAuthorization("Invalid API key")
        external_id = str(outcome.id)
        if reconnect_target and external_id != str(reconnect_target):
            logger.error(
                "Account mismatch on refresh for %s: expected %s, got %s",
                provider_id, reconnect_target, external_id,
            )
            raise InsufficientAuthorization(
                "Please refresh the channel that needs to be refreshed"
            )

        # 5. Name
        name = derive_display_name(outcome.name, outcome.username, external_id).strip()

        # 6. Trial guard
        if (
            self._billing_enabled
            and await self._repository.is_trialing(org_id)
            and await self._repository.had_prior_connection(org_id, external_id)
        ):
            logger.warning(
                "Previous connection of %s detected for trialing org %s", external_id, org_id
            )
            raise TrialAbuseBlocked(external_id)

        # 7. Persist
        record = await self._repository.upsert_credential(
            CredentialUpsert(
                organization_id=org_id,
                provider_identifier=provider_id,
                external_account_id=external_id,
                display_name=name,
                picture_url=outcome.picture,
                username=outcome.username,
                access_token=outcome.access_token,
                refresh_token=outcome.refresh_token,
                expires_in=outcome.expires_in,
                additional_settings=outcome.additional_settings,
                one_time_token=provider.one_time_token,
                in_between_steps=False if reconnect_target else provider.is_between_steps,
                timezone=timezone,
                custom_instance_details=self._instance_details(stored, code, custom_fields),
            )
        )
        logger.info("Connected %s channel %s (%s) for org %s", provider_id, external_id, name, org_id)
        return record

    async def _authenticate(
        self,
        provider: BaseProvider,
        params: AuthenticateParams,
        stored: AuthorizationState,
        reconnect_target: Optional[str],
    ) -> AuthOutcome:
        try:
            auth = await asyncio.wait_for(
                provider.authenticate(params, stored.external_context),
                timeout=self._timeout,
            )
            if isinstance(auth, str):
                return auth

            if reconnect_target and isinstance(provider, SupportsReconnect):
                logger.debug("Reconnecting existing channel %s", reconnect_target)
                renewed = await asyncio.wait_for(
                    provider.reconnect(auth.id, reconnect_target, auth.access_token),
                    timeout=self._timeout,
                )
                if isinstance(renewed, str):
                    return renewed
                return renewed.model_copy(
                    update={
                        "refresh_token": renewed.refresh_token or auth.refresh_token,
                        "expires_in": renewed.expires_in or auth.expires_in,
                    }
                )
            return auth
        except asyncio.TimeoutError:
            logger.error("Authentication with %s timed out", provider.identifier)
            return "Authentication timed out"
        except Exception as exc:
            logger.exception("Exception during authentication with %s", provider.identifier)
            return str(exc) or "Authentication failed"

    @staticmethod
    def _instance_details(
        stored: AuthorizationState, code: str, custom_fields: bool
    ) -> Optional[str]:
        if stored.external_context:
            return encrypt_secret(json.dumps(stored.external_context))
        if custom_fields:
            try:
                return encrypt_secret(base64.b64decode(code).decode())
            except (binascii.Error, UnicodeDecodeError):
                logger.warning("Custom field payload is not base64; storing nothing")
        return None
