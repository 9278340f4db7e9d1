"""
Authorization URL issuer — first half of the connect handshake.
"""

from __future__ import annotations

import logging
from typing import Optional

from config.settings import config
from connectors.base import SupportsExternalContext
from connectors.errors import MissingExternalUrl, ProviderNotAllowed
from connectors.registry import ProviderRegistry
from connectors.schemas import AuthorizationState, AuthorizationUrlResult
from connectors.state_store import StateStore

logger = logging.getLogger(__name__)


class AuthorizationUrlIssuer:
    def __init__(
        self,
        registry: ProviderRegistry,
        state_store: StateStore,
        *,
        state_ttl_seconds: Optional[int] = None,
    ) -> None:
        self._registry = registry
        self._state_store = state_store
        self._ttl = state_ttl_seconds or config.authorization_state_ttl_seconds

    async def issue_authorization_url(
        self,
        provider_id: str,
        refresh_target: Optional[str] = None,
        external_url: Optional[str] = None,
    ) -> AuthorizationUrlResult:
        """
        Build the provider's authorization URL and remember what completion
        will need under the returned state token.

        Raises
        ------
        ProviderNotAllowed  – provider not registered or not in the allow-list
        MissingExternalUrl  – self-hosted provider and no instance URL given

        Any other failure is returned as ``AuthorizationUrlResult(failed=True)``
        so the redirect page can show a message.
        """
        logger.info("Requesting authorization URL for %s", provider_id)
        logger.debug("Parameters: refresh=%s external_url=%s", refresh_target, external_url)

        if not self._registry.is_allowed(provider_id):
            logger.error("Provider not allowed: %s", provider_id)
            raise ProviderNotAllowed(provider_id)

        provider = self._registry.resolve(provider_id)
        needs_external = isinstance(provider, SupportsExternalContext)
        if needs_external and not external_url:
            logger.error("Missing external URL for provider %s", provider_id)
            raise MissingExternalUrl(provider_id)

        try:
            external_context = None
            if needs_external:
                external_context = {
                    **(await provider.resolve_external_context(external_url)),
                    "instance_url": external_url,
                }

            auth_url = await provider.generate_auth_url(external_context)

            await self._state_store.put(
                auth_url.state,
                AuthorizationState(
                    code_verifier=auth_url.code_verifier,
                    external_context=external_context,
                    reconnect_target=refresh_target or None,
                ),
                self._ttl,
            )
        except Exception as exc:
            logger.exception("Error generating authorization URL for %s", provider_id)
            return AuthorizationUrlResult(failed=True, message=str(exc) or type(exc).__name__)

        logger.info("Issued authorization URL for %s", provider_id)
        return AuthorizationUrlResult(url=auth_url.url)
