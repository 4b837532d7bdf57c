"""
Shared cache store for the dashboard service.

A thin layer over Redis exposing the five primitives the outbound layer
needs (SET with EX, GET, EXISTS, KEYS, DEL). Values are JSON encoded.
Every backend call goes through ``_run`` which turns a backend failure
into a failed ``StoreResult``: readers see "absent", writers become
no-ops, and the failure is logged once, here.
"""

import asyncio
import json
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import UpstreamConnectionError

T = TypeVar("T")

STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of one backend operation."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None


def create_redis_client(redis_url: Optional[str], socket_timeout: float = 5.0) -> redis.Redis:
    """Build the process-wide Redis client.

    Raises:
        UpstreamConnectionError: when no store location is configured.
    """
    if not redis_url:
        raise UpstreamConnectionError("redis", "Store location not configured")

    return redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=socket_timeout,
        socket_timeout=socket_timeout,
        retry_on_timeout=True,
        health_check_interval=30
    )


class SharedCacheStore:
    """TTL-bounded JSON key/value store shared by all request handlers."""

    def __init__(self, client: Optional[redis.Redis], prefix: str = "client:"):
        self._client = client
        self.prefix = prefix
        self.logger = get_logger("dashboard.store")

        if client is None:
            self.logger.warning("Cache store disabled; running without cache or rate-limit flags")

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def _run(self, operation: str, key: str,
                   func: Callable[[redis.Redis], Awaitable[T]]) -> StoreResult[T]:
        if self._client is None:
            return StoreResult(ok=False, error="store disabled")

        try:
            return StoreResult(ok=True, value=await func(self._client))
        except STORE_ERRORS as e:
            self.logger.warning("Cache store operation failed", operation=operation, key=key, error=str(e))
            return StoreResult(ok=False, error=str(e))

    async def put(self, key: str, value: Any, ttl_seconds: float) -> bool:
        """Store ``value`` under ``key`` for ``ttl_seconds``; overwrites."""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            self.logger.warning("Cache value not serializable", key=key, error=str(e))
            return False

        ttl = max(1, math.ceil(ttl_seconds))
        full_key = self._key(key)
        result = await self._run("set", full_key, lambda client: client.set(full_key, payload, ex=ttl))
        if result.ok:
            self.logger.debug("Cached value", key=full_key, ttl=ttl)
        return result.ok

    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value, or None when absent, expired or undecodable."""
        full_key = self._key(key)
        result = await self._run("get", full_key, lambda client: client.get(full_key))
        if not result.ok or result.value is None:
            return None

        try:
            return json.loads(result.value)
        except (TypeError, ValueError):
            self.logger.debug("Discarding undecodable cache entry", key=full_key)
            return None

    async def exists(self, key: str) -> bool:
        """True iff an unexpired entry is stored under ``key``."""
        full_key = self._key(key)
        result = await self._run("exists", full_key, lambda client: client.exists(full_key))
        return bool(result.ok and result.value)

    async def delete(self, pattern: str) -> int:
        """Best-effort removal of every key matching ``pattern``; returns the count."""
        full_pattern = self._key(pattern)
        found = await self._run("keys", full_pattern, lambda client: client.keys(full_pattern))
        keys: List[str] = list(found.value or []) if found.ok else []
        if not keys:
            return 0

        removed = await self._run("delete", full_pattern, lambda client: client.delete(*keys))
        if not removed.ok:
            return 0

        self.logger.info("Invalidated cache entries", pattern=full_pattern, count=removed.value)
        return int(removed.value or 0)

    async def ping(self) -> bool:
        """Check backend reachability."""
        result = await self._run("ping", "", lambda client: client.ping())
        return bool(result.ok and result.value)

    async def close(self):
        """Close the backend connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self.logger.info("Cache store closed")
