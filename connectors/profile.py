"""
Channel nickname / avatar changes for providers that allow editing the
connected account's public profile.
"""

from __future__ import annotations

import asyncio
import logging

from config.settings import config
from connectors.base import SupportsChangeNickname, SupportsChangeProfilePicture
from connectors.errors import UnknownCredential, UnknownOperation
from connectors.invocation import InvocationEngine
from connectors.repository import CredentialRepository
from connectors.schemas import CredentialRecord

logger = logging.getLogger(__name__)


async def change_profile(
    engine: InvocationEngine,
    repository: CredentialRepository,
    org_id: str,
    credential_id: str,
    name: str = "",
    picture: str = "",
) -> CredentialRecord:
    """
    Push a new display name and/or picture to the provider, then store what
    the provider reports back.

    Raises
    ------
    UnknownCredential – no such channel in the organization
    UnknownOperation  – provider supports neither nickname nor picture changes
    """
    credential, provider = await engine.resolve(org_id, credential_id)
    can_rename = isinstance(provider, SupportsChangeNickname)
    can_repaint = isinstance(provider, SupportsChangeProfilePicture)
    if not can_rename and not can_repaint:
        raise UnknownOperation("change_profile")

    timeout = config.provider_timeout_seconds
    new_picture = ""
    if can_repaint and picture:
        new_picture = await asyncio.wait_for(
            provider.change_profile_picture(credential, picture), timeout=timeout
        )
    new_name = ""
    if can_rename and name:
        new_name = await asyncio.wait_for(
            provider.change_nickname(credential, name), timeout=timeout
        )

    updated = await repository.update_profile(org_id, credential_id, new_name, new_picture)
    if updated is None:
        raise UnknownCredential(credential_id)
    logger.info("Profile of channel %s updated (name=%r)", credential_id, new_name or credential.display_name)
    return updated
