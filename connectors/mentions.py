"""
Mention aggregator — merges live provider search with the mention cache.

Live search is best-effort: faults are logged and count as no results.
Cache writes are best-effort too and never fail the search.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from connectors.errors import ConnectorError
from connectors.invocation import InvocationEngine
from connectors.repository import CredentialRepository
from connectors.schemas import CachedMention

logger = logging.getLogger(__name__)

MentionResult = Union[List[Dict[str, Any]], Dict[str, Any]]


def merge_mentions(
    cached: List[CachedMention], live: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Cached entries first, then live; first occurrence of each id wins."""
    seen = set()
    merged: List[Dict[str, Any]] = []
    candidates = [
        {"id": m.username, "image": m.image, "label": m.name} for m in cached
    ] + [item for item in live if isinstance(item, dict)]
    for item in candidates:
        key = item.get("id")
        if key in seen:
            continue
        seen.add(key)
        merged.append(item)
    return [m for m in merged if m.get("label") and m.get("id")]


class MentionAggregator:
    def __init__(self, engine: InvocationEngine, repository: CredentialRepository) -> None:
        self._engine = engine
        self._repository = repository

    async def search_mentions(
        self,
        org_id: str,
        credential_id: str,
        operation_name: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> MentionResult:
        """
        Raises
        ------
        UnknownCredential – no such channel in the organization
        """
        data = data or {}
        query = str(data.get("query") or "")
        credential, _ = await self._engine.resolve(org_id, credential_id)
        provider_id = credential.provider_identifier

        live: Any = []
        try:
            live = await self._engine.invoke(org_id, credential_id, operation_name, data) or []
        except ConnectorError:
            logger.exception("Error fetching mentions for channel %s", credential_id)

        if isinstance(live, dict) and live.get("none"):
            return live
        if not isinstance(live, list):
            live = []
        live = [item for item in live if isinstance(item, dict)]

        cached = await self._repository.get_mentions(provider_id, query)

        fresh = [
            CachedMention(
                name=str(item["label"]),
                username=str(item["id"]),
                image=str(item.get("image") or ""),
            )
            for item in live
            if item.get("label") and item.get("id") and not item.get("doNotCache")
        ]
        if fresh:
            try:
                await self._repository.append_mentions(provider_id, fresh)
            except Exception:
                logger.exception("Failed caching %d mentions for %s", len(fresh), provider_id)

        return merge_mentions(cached, live)
