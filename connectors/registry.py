"""
ProviderRegistry — maps provider identifiers to provider instances.

Read-only after startup.  Operation tables are validated when a provider is
registered so a misdeclared operation fails at boot instead of mid-request.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from config.settings import config
from connectors.base import BaseProvider, SupportsCustomFields, is_operation_callable

logger = logging.getLogger(__name__)


def _default_providers() -> List[BaseProvider]:
    # ── All known providers; add new ones here ──────────────────────────
    from connectors.providers.bluesky import BlueskyProvider
    from connectors.providers.github import GitHubProvider
    from connectors.providers.gmail import GmailProvider
    from connectors.providers.linkedin_page import LinkedInPageProvider
    from connectors.providers.mastodon import MastodonProvider

    return [
        GitHubProvider(),
        GmailProvider(),
        MastodonProvider(),
        BlueskyProvider(),
        LinkedInPageProvider(),
    ]


class ProviderRegistry:
    """Singleton registry for all channel providers."""

    _instance: Optional["ProviderRegistry"] = None

    def __new__(cls) -> "ProviderRegistry":
        if cls._instance is None:
            inst = super().__new__(cls)
            inst._providers: Dict[str, BaseProvider] = {}
            inst._allowed: List[str] = list(config.allowed_providers)
            inst._discovered = False
            cls._instance = inst
        return cls._instance

    def register(self, provider: BaseProvider) -> None:
        """
        Add ``provider`` to the registry.

        Raises
        ------
        ValueError – duplicate identifier or an operation that is not a coroutine
        """
        if provider.identifier in self._providers:
            raise ValueError(f"Provider '{provider.identifier}' already registered")
        for name in provider.operation_names():
            fn = provider.get_operation(name)
            if fn is None or not is_operation_callable(fn):
                raise ValueError(
                    f"Operation '{name}' of provider '{provider.identifier}' "
                    f"must be an async method"
                )
        self._providers[provider.identifier] = provider
        logger.info(
            "Provider registered: %s (%s) operations=%s capabilities=%s",
            provider.display_name,
            provider.identifier,
            provider.operation_names(),
            sorted(provider.capabilities()),
        )

    def discover(self) -> None:
        """Register all configured built-in providers."""
        if self._discovered:
            return
        for provider in _default_providers():
            if provider.is_configured():
                self.register(provider)
            else:
                logger.warning(
                    "Provider %s skipped — not configured (missing client_id/secret)",
                    provider.identifier,
                )
        self._discovered = True

    def is_allowed(self, provider_id: str) -> bool:
        if provider_id not in self._providers:
            return False
        return not self._allowed or provider_id in self._allowed

    def resolve(self, provider_id: str) -> Optional[BaseProvider]:
        return self._providers.get(provider_id)

    def allowed_providers(self) -> List[str]:
        return [p for p in self._providers if self.is_allowed(p)]

    def list_providers(self) -> List[Dict[str, Any]]:
        """Catalogue for the frontend: identity, capabilities and form fields."""
        catalogue = []
        for identifier in self.allowed_providers():
            provider = self._providers[identifier]
            entry: Dict[str, Any] = {
                "identifier": identifier,
                "name": provider.display_name,
                "capabilities": sorted(provider.capabilities()),
                "operations": provider.operation_names(),
            }
            if isinstance(provider, SupportsCustomFields):
                entry["custom_fields"] = [
                    f.model_dump() for f in provider.custom_fields()
                ]
            catalogue.append(entry)
        return catalogue

    # ── reset (for tests) ──────────────────────────────────────────────

    @classmethod
    def reset(cls) -> None:
        """Destroy singleton — only useful in test teardown."""
        cls._instance = None
