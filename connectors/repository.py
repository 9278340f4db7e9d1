"""
Credential repository — the persistence boundary for channels and mentions.

``CredentialRepository`` is the contract the connector services depend on;
``SqlCredentialRepository`` implements it over the async SQLAlchemy session
of the current request.  Tokens are encrypted on write and decrypted on read,
so callers only ever see plaintext ``CredentialRecord`` objects.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol

from sqlalchemy import exists, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.encryption import decrypt_secret, encrypt_secret
from connectors.schemas import CachedMention, CredentialRecord, CredentialUpsert
from database.models import Integration, Mention, Organization

logger = logging.getLogger(__name__)

_MENTION_LOOKUP_LIMIT = 100


class CredentialRepository(Protocol):
    async def get_credential(self, org_id: str, credential_id: str) -> Optional[CredentialRecord]: ...

    async def upsert_credential(self, fields: CredentialUpsert) -> CredentialRecord: ...

    async def disable_credential(self, org_id: str, credential_id: str) -> None: ...

    async def had_prior_connection(self, org_id: str, external_account_id: str) -> bool: ...

    async def is_trialing(self, org_id: str) -> bool: ...

    async def update_profile(
        self, org_id: str, credential_id: str, name: str, picture: str
    ) -> Optional[CredentialRecord]: ...

    async def get_mentions(self, provider_id: str, query: str) -> List[CachedMention]: ...

    async def append_mentions(self, provider_id: str, entries: List[CachedMention]) -> None: ...


def _to_uuid(value: str | uuid.UUID) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(value)
    except (TypeError, ValueError):
        return None


def _to_record(row: Integration) -> CredentialRecord:
    return CredentialRecord(
        id=str(row.integration_id),
        organization_id=str(row.organization_id),
        provider_identifier=row.provider_identifier,
        external_account_id=row.internal_id,
        display_name=row.name,
        username=row.username or "",
        picture_url=row.picture or "",
        access_token=decrypt_secret(row.access_token),
        refresh_token=decrypt_secret(row.refresh_token or ""),
        token_expiration=row.token_expiration,
        additional_settings=row.additional_settings or [],
        custom_instance_details=row.custom_instance_details,
        disabled=row.disabled,
        in_between_steps=row.in_between_steps,
        refresh_needed=row.refresh_needed,
        one_time_token=row.one_time_token,
        timezone=row.timezone,
    )


class SqlCredentialRepository:
    """``CredentialRepository`` over a request-scoped ``AsyncSession``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _row(self, org_id: str, credential_id: str) -> Optional[Integration]:
        oid, cid = _to_uuid(org_id), _to_uuid(credential_id)
        if oid is None or cid is None:
            return None
        result = await self._session.execute(
            select(Integration).where(
                Integration.integration_id == cid,
                Integration.organization_id == oid,
                Integration.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def get_credential(self, org_id: str, credential_id: str) -> Optional[CredentialRecord]:
        row = await self._row(org_id, credential_id)
        return _to_record(row) if row else None

    async def upsert_credential(self, fields: CredentialUpsert) -> CredentialRecord:
        """
        Create the channel, or update it in place when the organization
        already has one for the same external account (soft-deleted rows are
        revived).
        """
        oid = _to_uuid(fields.organization_id)
        result = await self._session.execute(
            select(Integration).where(
                Integration.organization_id == oid,
                Integration.internal_id == fields.external_account_id,
            )
        )
        row = result.scalar_one_or_none()

        expiration = (
            datetime.now(timezone.utc) + timedelta(seconds=fields.expires_in)
            if fields.expires_in
            else None
        )

        if row is None:
            row = Integration(
                integration_id=uuid.uuid4(),
                organization_id=oid,
                internal_id=fields.external_account_id,
                additional_settings=[],
                in_between_steps=bool(fields.in_between_steps),
            )
            self._session.add(row)
            logger.info(
                "Created %s channel %s for org %s",
                fields.provider_identifier, fields.external_account_id, fields.organization_id,
            )
        else:
            logger.info(
                "Updated %s channel %s for org %s",
                fields.provider_identifier, fields.external_account_id, fields.organization_id,
            )
            if fields.in_between_steps is not None:
                row.in_between_steps = fields.in_between_steps

        row.provider_identifier = fields.provider_identifier
        row.name = fields.display_name
        row.picture = fields.picture_url
        row.username = fields.username or row.username
        row.access_token = encrypt_secret(fields.access_token)
        row.refresh_token = encrypt_secret(fields.refresh_token)
        row.token_expiration = expiration
        row.one_time_token = fields.one_time_token
        row.refresh_needed = False
        row.disabled = False
        row.deleted_at = None
        if fields.additional_settings is not None:
            row.additional_settings = fields.additional_settings
        if fields.custom_instance_details is not None:
            row.custom_instance_details = fields.custom_instance_details
        if fields.timezone is not None:
            row.timezone = fields.timezone

        await self._session.flush()
        return _to_record(row)

    async def disable_credential(self, org_id: str, credential_id: str) -> None:
        oid, cid = _to_uuid(org_id), _to_uuid(credential_id)
        if oid is None or cid is None:
            return
        await self._session.execute(
            update(Integration)
            .where(
                Integration.integration_id == cid,
                Integration.organization_id == oid,
            )
            .values(disabled=True, refresh_needed=True)
        )
        await self._session.flush()

    async def had_prior_connection(self, org_id: str, external_account_id: str) -> bool:
        oid = _to_uuid(org_id)
        result = await self._session.execute(
            select(
                exists().where(
                    Integration.organization_id == oid,
                    Integration.internal_id == external_account_id,
                )
            )
        )
        return bool(result.scalar())

    async def is_trialing(self, org_id: str) -> bool:
        oid = _to_uuid(org_id)
        result = await self._session.execute(
            select(Organization.is_trialing).where(Organization.org_id == oid)
        )
        return bool(result.scalar_one_or_none())

    async def update_profile(
        self, org_id: str, credential_id: str, name: str, picture: str
    ) -> Optional[CredentialRecord]:
        row = await self._row(org_id, credential_id)
        if row is None:
            return None
        if name:
            row.name = name
        if picture:
            row.picture = picture
        await self._session.flush()
        return _to_record(row)

    async def get_mentions(self, provider_id: str, query: str) -> List[CachedMention]:
        pattern = f"%{query}%"
        result = await self._session.execute(
            select(Mention)
            .where(
                Mention.platform == provider_id,
                or_(Mention.name.ilike(pattern), Mention.username.ilike(pattern)),
            )
            .order_by(Mention.name)
            .limit(_MENTION_LOOKUP_LIMIT)
        )
        return [
            CachedMention(name=m.name, username=m.username, image=m.image or "")
            for m in result.scalars().all()
        ]

    async def append_mentions(self, provider_id: str, entries: List[CachedMention]) -> None:
        """
        Insert new cache rows inside a SAVEPOINT.  A failed insert rolls back
        only the savepoint, so token writes already flushed in the same
        request transaction still commit.
        """
        if not entries:
            return
        stmt = (
            pg_insert(Mention)
            .values(
                [
                    {
                        "mention_id": uuid.uuid4(),
                        "platform": provider_id,
                        "name": e.name,
                        "username": e.username,
                        "image": e.image,
                    }
                    for e in entries
                ]
            )
            .on_conflict_do_nothing(index_elements=["platform", "username"])
        )
        async with self._session.begin_nested():
            await self._session.execute(stmt)
