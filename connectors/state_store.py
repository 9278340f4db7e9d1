"""
Ephemeral state store — short-lived authorization artifacts keyed by state token.

One composite ``AuthorizationState`` record is written per state token, so a
reader either sees the verifier, external context and reconnect target
together or sees nothing.  Expired and absent entries are indistinguishable.

``take`` is the atomic get-and-delete that makes a state token single-use:
of two concurrent completions with the same token, exactly one receives the
record.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from connectors.schemas import AuthorizationState

logger = logging.getLogger(__name__)

_KEY_PREFIX = "authorization-state:"


class StateStore(ABC):
    """put / get / delete with expiry, plus atomic take."""

    @abstractmethod
    async def put(self, key: str, value: AuthorizationState, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[AuthorizationState]:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; deleting an absent key is a no-op."""
        ...

    @abstractmethod
    async def take(self, key: str) -> Optional[AuthorizationState]:
        """Return the entry for ``key`` and remove it in one step."""
        ...


class InMemoryStateStore(StateStore):
    """
    Process-local store.  Suitable for a single worker and for tests; a
    multi-worker deployment needs ``RedisStateStore``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[float, AuthorizationState]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[AuthorizationState]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def _sweep(self) -> None:
        now = self._clock()
        for stale in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[stale]

    async def put(self, key: str, value: AuthorizationState, ttl_seconds: int) -> None:
        async with self._lock:
            # abandoned handshakes are never read again; drop them here
            self._sweep()
            self._entries[key] = (self._clock() + ttl_seconds, value)

    async def get(self, key: str) -> Optional[AuthorizationState]:
        async with self._lock:
            return self._live(key)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def take(self, key: str) -> Optional[AuthorizationState]:
        async with self._lock:
            value = self._live(key)
            self._entries.pop(key, None)
            return value


class RedisStateStore(StateStore):
    """Redis-backed store; expiry is delegated to Redis ``EX``."""

    def __init__(self, client) -> None:
        self._client = client

    @staticmethod
    def _key(key: str) -> str:
        return f"{_KEY_PREFIX}{key}"

    @staticmethod
    def _decode(raw) -> Optional[AuthorizationState]:
        if raw is None:
            return None
        return AuthorizationState.model_validate_json(raw)

    async def put(self, key: str, value: AuthorizationState, ttl_seconds: int) -> None:
        await self._client.set(self._key(key), value.model_dump_json(), ex=ttl_seconds)

    async def get(self, key: str) -> Optional[AuthorizationState]:
        return self._decode(await self._client.get(self._key(key)))

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def take(self, key: str) -> Optional[AuthorizationState]:
        # GETDEL needs Redis >= 6.2
        return self._decode(await self._client.getdel(self._key(key)))


_store: Optional[StateStore] = None


def get_state_store() -> StateStore:
    """Return the process-wide store selected by ``STATE_STORE_BACKEND``."""
    global _store
    if _store is None:
        from config.settings import config

        if config.state_store_backend == "redis":
            import redis.asyncio as redis

            _store = RedisStateStore(
                redis.Redis.from_url(config.redis_url, decode_responses=True)
            )
            logger.info("Authorization state stored in Redis")
        else:
            _store = InMemoryStateStore()
            logger.info("Authorization state stored in process memory")
    return _store
