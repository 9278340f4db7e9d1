"""
Invocation engine — run a named provider operation with a stored credential.

When the provider signals ``RefreshTokenRequired`` the credential is
refreshed once and the operation retried once.  A credential that cannot be
refreshed is disabled.  Provider faults never escape: the caller gets
``False``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from config.settings import config
from connectors.base import BaseProvider, SupportsRefresh
from connectors.errors import (
    OperationFailed,
    RefreshFailed,
    RefreshTokenRequired,
    UnknownCredential,
    UnknownOperation,
)
from connectors.registry import ProviderRegistry
from connectors.repository import CredentialRepository
from connectors.schemas import CredentialRecord, CredentialUpsert

logger = logging.getLogger(__name__)

_MAX_REFRESHES = 1


class InvocationEngine:
    def __init__(
        self,
        registry: ProviderRegistry,
        repository: CredentialRepository,
        *,
        timeout_seconds: Optional[float] = None,
        refresh_wait_seconds: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._timeout = timeout_seconds or config.provider_timeout_seconds
        self._refresh_wait = (
            config.refresh_wait_seconds if refresh_wait_seconds is None else refresh_wait_seconds
        )

    async def resolve(self, org_id: str, credential_id: str) -> Tuple[CredentialRecord, BaseProvider]:
        credential = await self._repository.get_credential(org_id, credential_id)
        if credential is None:
            logger.error("Invalid integration %s for org %s", credential_id, org_id)
            raise UnknownCredential(credential_id)
        provider = self._registry.resolve(credential.provider_identifier)
        if provider is None:
            logger.error("Invalid provider %s", credential.provider_identifier)
            raise UnknownCredential(credential_id)
        return credential, provider

    async def invoke(
        self,
        org_id: str,
        credential_id: str,
        operation_name: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Call ``operation_name`` on the channel's provider.

        Returns the operation's result, or ``False`` when it failed.

        Raises
        ------
        UnknownCredential – no such channel in the organization
        UnknownOperation  – the provider declares no such operation
        """
        credential, provider = await self.resolve(org_id, credential_id)
        op = provider.get_operation(operation_name)
        if op is None:
            logger.error("Function %s not found on %s", operation_name, provider.identifier)
            raise UnknownOperation(operation_name)

        data = data or {}
        refreshes = 0
        while True:
            try:
                return await self._call(op, credential, data)
            except RefreshTokenRequired:
                if refreshes >= _MAX_REFRESHES:
                    logger.error(
                        "Channel %s still rejected after refresh; giving up on %s",
                        credential_id, operation_name,
                    )
                    return False
                logger.warning("Token refresh required for channel %s", credential_id)
                refreshes += 1
                try:
                    credential = await self._refresh(provider, credential)
                except RefreshFailed:
                    logger.error(
                        "Token refresh failed for channel %s, disabling it", credential_id
                    )
                    await self._repository.disable_credential(org_id, credential_id)
                    return False
                if provider.refresh_wait and self._refresh_wait:
                    await asyncio.sleep(self._refresh_wait)
            except OperationFailed:
                logger.exception(
                    "Error executing %s for channel %s", operation_name, credential_id
                )
                return False

    async def _call(
        self, op: Callable, credential: CredentialRecord, data: Dict[str, Any]
    ) -> Any:
        try:
            return await asyncio.wait_for(
                op(credential.access_token, data, credential.external_account_id, credential),
                timeout=self._timeout,
            )
        except RefreshTokenRequired:
            raise
        except Exception as exc:
            raise OperationFailed(str(exc)) from exc

    async def _refresh(
        self, provider: BaseProvider, credential: CredentialRecord
    ) -> CredentialRecord:
        """Refresh and persist; raises ``RefreshFailed`` when no token comes back."""
        if not isinstance(provider, SupportsRefresh) or provider.one_time_token:
            raise RefreshFailed(f"{provider.identifier} tokens cannot be refreshed")
        try:
            result = await asyncio.wait_for(
                provider.refresh_token(credential.refresh_token, credential),
                timeout=self._timeout,
            )
        except Exception as exc:
            logger.exception("Refresh call to %s raised", provider.identifier)
            raise RefreshFailed(str(exc)) from exc
        if not result.access_token:
            raise RefreshFailed("no access token returned")

        refreshed = await self._repository.upsert_credential(
            CredentialUpsert(
                organization_id=credential.organization_id,
                provider_identifier=credential.provider_identifier,
                external_account_id=credential.external_account_id,
                display_name=credential.display_name,
                picture_url=credential.picture_url,
                username=credential.username,
                access_token=result.access_token,
                refresh_token=result.refresh_token or credential.refresh_token,
                expires_in=result.expires_in,
                additional_settings=result.additional_settings,
                one_time_token=provider.one_time_token,
            )
        )
        logger.info("Token refreshed for channel %s", credential.id)
        return refreshed
