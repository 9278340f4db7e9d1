"""
Integration API routes — authorization URL, connect, provider functions,
mentions and profile changes.

Route prefix: /api/v1/integrations
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_org_id
from connectors.completer import ConnectionCompleter
from connectors.invocation import InvocationEngine
from connectors.issuer import AuthorizationUrlIssuer
from connectors.mentions import MentionAggregator
from connectors.profile import change_profile
from connectors.registry import ProviderRegistry
from connectors.repository import CredentialRepository, SqlCredentialRepository
from connectors.schemas import (
    AuthorizationUrlResult,
    ConnectRequest,
    CredentialRecord,
    FunctionRequest,
    ProfileChangeRequest,
)
from connectors.state_store import StateStore, get_state_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])


# ── Dependencies ───────────────────────────────────────────────────────


def get_registry() -> ProviderRegistry:
    return ProviderRegistry()


def get_store() -> StateStore:
    return get_state_store()


def get_repository(session: AsyncSession = Depends(db_session)) -> CredentialRepository:
    return SqlCredentialRepository(session)


def get_engine(
    registry: ProviderRegistry = Depends(get_registry),
    repository: CredentialRepository = Depends(get_repository),
) -> InvocationEngine:
    return InvocationEngine(registry, repository)


def _public(record: CredentialRecord) -> Dict[str, Any]:
    """Channel fields safe to return to the browser."""
    return record.model_dump(
        exclude={"access_token", "refresh_token", "custom_instance_details"}
    )


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(
    registry: ProviderRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    """Providers the frontend may offer, with their capabilities."""
    return registry.list_providers()


@router.get("/social/{provider}", response_model=AuthorizationUrlResult, response_model_exclude_none=True)
async def get_authorization_url(
    provider: str,
    refresh: Optional[str] = Query(None),
    external_url: Optional[str] = Query(None, alias="externalUrl"),
    org_id: str = Depends(get_current_org_id),
    registry: ProviderRegistry = Depends(get_registry),
    store: StateStore = Depends(get_store),
) -> AuthorizationUrlResult:
    issuer = AuthorizationUrlIssuer(registry, store)
    return await issuer.issue_authorization_url(provider, refresh, external_url)


@router.post("/social/{provider}/connect")
async def connect_provider(
    provider: str,
    body: ConnectRequest,
    org_id: str = Depends(get_current_org_id),
    registry: ProviderRegistry = Depends(get_registry),
    store: StateStore = Depends(get_store),
    repository: CredentialRepository = Depends(get_repository),
) -> Dict[str, Any]:
    completer = ConnectionCompleter(registry, store, repository)
    record = await completer.complete_connection(
        org_id, provider, body.state, body.code, body.refresh, body.timezone
    )
    return _public(record)


@router.post("/function")
async def run_function(
    body: FunctionRequest,
    org_id: str = Depends(get_current_org_id),
    engine: InvocationEngine = Depends(get_engine),
) -> Any:
    return await engine.invoke(org_id, body.id, body.name, body.data)


@router.post("/mentions")
async def search_mentions(
    body: FunctionRequest,
    org_id: str = Depends(get_current_org_id),
    engine: InvocationEngine = Depends(get_engine),
    repository: CredentialRepository = Depends(get_repository),
) -> Any:
    aggregator = MentionAggregator(engine, repository)
    return await aggregator.search_mentions(org_id, body.id, body.name, body.data)


@router.post("/{credential_id}/nickname")
async def set_nickname(
    credential_id: str,
    body: ProfileChangeRequest,
    org_id: str = Depends(get_current_org_id),
    engine: InvocationEngine = Depends(get_engine),
    repository: CredentialRepository = Depends(get_repository),
) -> Dict[str, Any]:
    record = await change_profile(
        engine, repository, org_id, credential_id, body.name, body.picture
    )
    return _public(record)
