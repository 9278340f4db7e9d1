"""
Shared fixtures: an in-memory credential repository, a controllable fake
provider, a manual clock for the state store, and a fresh registry per test.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest

from connectors.base import BaseProvider, SupportsReconnect, SupportsRefresh, operation
from connectors.errors import RefreshTokenRequired
from connectors.registry import ProviderRegistry
from connectors.schemas import (
    AuthTokenDetails,
    AuthUrl,
    CachedMention,
    CredentialRecord,
    CredentialUpsert,
    RefreshResult,
)
from connectors.state_store import InMemoryStateStore


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryRepository:
    """Dict-backed stand-in for ``SqlCredentialRepository``."""

    def __init__(self) -> None:
        self.records: Dict[str, CredentialRecord] = {}
        self.upserts: List[CredentialUpsert] = []
        self.disable_calls: List[Tuple[str, str]] = []
        self.prior_connections: set = set()
        self.trialing_orgs: set = set()
        self.mentions: Dict[str, List[CachedMention]] = {}
        self.fail_mention_writes = False
        self._ids = itertools.count(1)

    def add(self, **fields: Any) -> CredentialRecord:
        record = CredentialRecord(**fields)
        self.records[record.id] = record
        return record

    async def get_credential(self, org_id: str, credential_id: str) -> Optional[CredentialRecord]:
        record = self.records.get(credential_id)
        if record is None or record.organization_id != org_id:
            return None
        return record

    async def upsert_credential(self, fields: CredentialUpsert) -> CredentialRecord:
        self.upserts.append(fields)
        existing = next(
            (
                r for r in self.records.values()
                if r.organization_id == fields.organization_id
                and r.external_account_id == fields.external_account_id
            ),
            None,
        )
        base = existing.model_dump() if existing else {"id": f"cred-{next(self._ids)}"}
        base.update(
            organization_id=fields.organization_id,
            provider_identifier=fields.provider_identifier,
            external_account_id=fields.external_account_id,
            display_name=fields.display_name,
            picture_url=fields.picture_url,
            username=fields.username,
            access_token=fields.access_token,
            refresh_token=fields.refresh_token,
            one_time_token=fields.one_time_token,
            disabled=False,
            refresh_needed=False,
        )
        if fields.in_between_steps is not None:
            base["in_between_steps"] = fields.in_between_steps
        if fields.additional_settings is not None:
            base["additional_settings"] = fields.additional_settings
        if fields.custom_instance_details is not None:
            base["custom_instance_details"] = fields.custom_instance_details
        if fields.timezone is not None:
            base["timezone"] = fields.timezone
        record = CredentialRecord(**base)
        self.records[record.id] = record
        return record

    async def disable_credential(self, org_id: str, credential_id: str) -> None:
        self.disable_calls.append((org_id, credential_id))
        record = self.records.get(credential_id)
        if record is not None and record.organization_id == org_id:
            self.records[credential_id] = record.model_copy(
                update={"disabled": True, "refresh_needed": True}
            )

    async def had_prior_connection(self, org_id: str, external_account_id: str) -> bool:
        return (org_id, external_account_id) in self.prior_connections

    async def is_trialing(self, org_id: str) -> bool:
        return org_id in self.trialing_orgs

    async def update_profile(
        self, org_id: str, credential_id: str, name: str, picture: str
    ) -> Optional[CredentialRecord]:
        record = await self.get_credential(org_id, credential_id)
        if record is None:
            return None
        update = {}
        if name:
            update["display_name"] = name
        if picture:
            update["picture_url"] = picture
        record = record.model_copy(update=update)
        self.records[credential_id] = record
        return record

    async def get_mentions(self, provider_id: str, query: str) -> List[CachedMention]:
        return [
            m for m in self.mentions.get(provider_id, [])
            if query.lower() in m.name.lower() or query.lower() in m.username.lower()
        ]

    async def append_mentions(self, provider_id: str, entries: List[CachedMention]) -> None:
        if self.fail_mention_writes:
            raise RuntimeError("cache unavailable")
        bucket = self.mentions.setdefault(provider_id, [])
        known = {m.username for m in bucket}
        bucket.extend(e for e in entries if e.username not in known)


class FakeProvider(BaseProvider, SupportsRefresh):
    """OAuth-style provider whose every answer the test controls."""

    identifier = "fake"
    display_name = "Fake"

    def __init__(self) -> None:
        self.auth_result: Any = AuthTokenDetails(
            id="acct-1",
            name="Fake Account",
            username="fake.account",
            access_token="at-1",
            refresh_token="rt-1",
            expires_in=3600,
        )
        self.auth_calls: List[Tuple[Any, Any]] = []
        self.refresh_result: Any = RefreshResult(access_token="at-2", refresh_token="rt-2", expires_in=3600)
        self.refresh_calls: List[str] = []
        self.echo_tokens: List[str] = []
        self.expired_tokens: set = set()
        self.mention_result: Any = []
        self.next_state = "state-1"
        self.auth_delay = 0.0
        self.op_delay = 0.0

    async def generate_auth_url(self, external_context=None) -> AuthUrl:
        return AuthUrl(
            url=f"https://fake.example/authorize?state={self.next_state}",
            state=self.next_state,
            code_verifier="verifier-1",
        )

    async def authenticate(self, params, external_context=None):
        self.auth_calls.append((params, external_context))
        if self.auth_delay:
            await asyncio.sleep(self.auth_delay)
        if isinstance(self.auth_result, Exception):
            raise self.auth_result
        return self.auth_result

    async def refresh_token(self, refresh_token, credential=None) -> RefreshResult:
        self.refresh_calls.append(refresh_token)
        if isinstance(self.refresh_result, Exception):
            raise self.refresh_result
        return self.refresh_result

    @operation
    async def echo(self, token, data, external_account_id, credential):
        self.echo_tokens.append(token)
        if self.op_delay:
            await asyncio.sleep(self.op_delay)
        if token in self.expired_tokens:
            raise RefreshTokenRequired()
        return {"token": token, "data": data, "account": external_account_id}

    @operation
    async def explode(self, token, data, external_account_id, credential):
        raise RuntimeError("provider blew up")

    @operation
    async def mention(self, token, data, external_account_id, credential):
        if isinstance(self.mention_result, Exception):
            raise self.mention_result
        return self.mention_result


class ReconnectingProvider(FakeProvider, SupportsReconnect):
    """Member-level handshake followed by a lookup of the channel being refreshed."""

    identifier = "fake-pages"
    display_name = "Fake Pages"
    is_between_steps = True

    def __init__(self) -> None:
        super().__init__()
        self.next_state = "state-r"
        self.reconnect_calls: List[Tuple[str, str, str]] = []
        self.reconnect_result: Any = AuthTokenDetails(
            id="page-9", name="Fake Page", access_token="at-1"
        )

    async def reconnect(self, external_account_id, reconnect_target, access_token):
        self.reconnect_calls.append((external_account_id, reconnect_target, access_token))
        return self.reconnect_result


ORG = "org-1"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock: ManualClock) -> InMemoryStateStore:
    return InMemoryStateStore(clock=clock)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(provider: FakeProvider):
    ProviderRegistry.reset()
    reg = ProviderRegistry()
    reg.register(provider)
    yield reg
    ProviderRegistry.reset()


@pytest.fixture
def reconnecting_provider(registry) -> ReconnectingProvider:
    provider = ReconnectingProvider()
    registry.register(provider)
    return provider


@pytest.fixture
def credential(repository: InMemoryRepository) -> CredentialRecord:
    return repository.add(
        id="cred-1",
        organization_id=ORG,
        provider_identifier="fake",
        external_account_id="acct-1",
        display_name="Fake Account",
        access_token="at-1",
        refresh_token="rt-1",
    )
