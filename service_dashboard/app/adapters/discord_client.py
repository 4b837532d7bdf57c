"""
Discord API client for the dashboard.

Named operations over the cached fetch executor. Each operation picks its
cache key and TTL and decides how to degrade when the executor fails:

- ``get_user_guilds``: falls back to whatever is still cached, else raises
- ``get_guild`` / ``get_current_user``: return None
- ``get_guild_channels``: returns an empty list
"""

import hashlib
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from shared.errors import RateLimitedError, UpstreamConnectionError, UpstreamError
from ..caching.store import SharedCacheStore
from ..ratelimit.gate import endpoint_for
from .fetch_executor import CachedFetchExecutor, OutboundCall

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig
    from shared.metrics import MetricsCollector


FETCH_ERRORS = (RateLimitedError, UpstreamConnectionError, UpstreamError)

USER_GUILDS_PATH = "/users/@me/guilds"
CURRENT_USER_PATH = "/users/@me"


def token_scope(access_token: str) -> str:
    """Stable cache scope for a token that never reveals the token itself."""
    return hashlib.sha256(access_token.encode("utf-8")).hexdigest()[:16]


def user_guilds_key(user_id: str) -> str:
    return f"discord:guilds:{user_id}"


def guild_key(guild_id: str) -> str:
    return f"discord:guild:{guild_id}"


def guild_channels_key(guild_id: str) -> str:
    return f"discord:channels:{guild_id}"


def current_user_key(access_token: str) -> str:
    return f"discord:user:{token_scope(access_token)}"


class DiscordApiClient:
    """Typed facade over the Discord REST API."""

    def __init__(
        self,
        executor: CachedFetchExecutor,
        store: SharedCacheStore,
        *,
        api_base: Optional[str],
        ttl_user_guilds: int = 300,
        ttl_guild: int = 600,
        ttl_guild_channels: int = 300,
        ttl_current_user: int = 600,
        max_retries: int = 3,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.executor = executor
        self.store = store
        self.api_base = api_base
        self.ttl_user_guilds = ttl_user_guilds
        self.ttl_guild = ttl_guild
        self.ttl_guild_channels = ttl_guild_channels
        self.ttl_current_user = ttl_current_user
        self.max_retries = max_retries
        self.metrics = metrics
        self.logger = get_logger("dashboard.discord_client")

    @classmethod
    def from_config(cls, executor: CachedFetchExecutor, store: SharedCacheStore,
                    config: "BaseConfig", metrics: Optional["MetricsCollector"] = None) -> "DiscordApiClient":
        return cls(
            executor,
            store,
            api_base=config.discord_api_base,
            ttl_user_guilds=config.cache_ttl_user_guilds,
            ttl_guild=config.cache_ttl_guild,
            ttl_guild_channels=config.cache_ttl_guild_channels,
            ttl_current_user=config.cache_ttl_current_user,
            max_retries=config.fetch_max_retries,
            metrics=metrics,
        )

    def _url(self, path: str) -> str:
        if not self.api_base:
            raise UpstreamConnectionError("discord", "Discord API base URL not configured")
        return f"{self.api_base.rstrip('/')}{path}"

    def _call(self, path: str, access_token: str, cache_key: str, cache_ttl: int,
              cache_type: str, params: Optional[Dict[str, Any]] = None) -> OutboundCall:
        return OutboundCall(
            url=self._url(path),
            headers={"Authorization": f"Bearer {access_token}"},
            params=params,
            cache_key=cache_key,
            cache_ttl=cache_ttl,
            max_retries=self.max_retries,
            cache_type=cache_type,
        )

    def tracked_endpoints(self, guild_id: Optional[str] = None) -> List[str]:
        """Rate-limit buckets of the routes a dashboard session uses."""
        paths = [USER_GUILDS_PATH, CURRENT_USER_PATH]
        if guild_id:
            paths += [f"/guilds/{guild_id}", f"/guilds/{guild_id}/channels"]
        return [endpoint_for(self._url(path)) for path in paths]

    async def get_user_guilds(self, access_token: str, user_id: str, force_fresh: bool = False) -> List[Dict[str, Any]]:
        """Guilds the token's user belongs to.

        ``force_fresh`` skips the cache read but still writes through. On
        any fetch failure the last cached list is returned if one is still
        stored; otherwise the failure propagates.
        """
        cache_key = user_guilds_key(user_id)
        try:
            call = self._call(USER_GUILDS_PATH, access_token, cache_key, self.ttl_user_guilds,
                              "user_guilds", params={"with_counts": "false"})
            guilds = await self.executor.fetch_with_policy(call, bypass_cache=force_fresh)
        except FETCH_ERRORS as e:
            cached = await self.store.get(cache_key)
            if isinstance(cached, list):
                self.logger.warning("Returning cached guilds after fetch failure", user_id=user_id, error=str(e))
                if self.metrics:
                    self.metrics.increment_counter("stale_fallbacks_total", operation="get_user_guilds")
                return cached
            raise

        return guilds if isinstance(guilds, list) else []

    async def get_guild(self, guild_id: str, access_token: str) -> Optional[Dict[str, Any]]:
        """Guild metadata, or None when it cannot be fetched."""
        try:
            call = self._call(f"/guilds/{guild_id}", access_token, guild_key(guild_id), self.ttl_guild, "guild")
            return await self.executor.fetch_with_policy(call)
        except FETCH_ERRORS as e:
            self.logger.error("Error fetching guild", guild_id=guild_id, error=str(e))
            return None

    async def get_guild_channels(self, guild_id: str, access_token: str) -> List[Dict[str, Any]]:
        """Channels of a guild; empty when they cannot be fetched."""
        try:
            call = self._call(f"/guilds/{guild_id}/channels", access_token, guild_channels_key(guild_id),
                              self.ttl_guild_channels, "guild_channels")
            channels = await self.executor.fetch_with_policy(call)
        except FETCH_ERRORS as e:
            self.logger.error("Error fetching guild channels", guild_id=guild_id, error=str(e))
            return []

        return channels if isinstance(channels, list) else []

    async def get_current_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """The token owner's user object, or None."""
        try:
            call = self._call(CURRENT_USER_PATH, access_token, current_user_key(access_token),
                              self.ttl_current_user, "current_user")
            return await self.executor.fetch_with_policy(call)
        except FETCH_ERRORS as e:
            self.logger.error("Error fetching current user", error=str(e))
            return None

    async def clear_user_cache(self, user_id: str, access_token: Optional[str] = None) -> int:
        """Drop the user's cached guild list, and their user object when the token is given."""
        removed = await self.store.delete(user_guilds_key(user_id))
        if access_token:
            removed += await self.store.delete(current_user_key(access_token))
        return removed

    async def clear_guild_cache(self, guild_id: str) -> int:
        """Drop the cached guild metadata and channel list."""
        removed = await self.store.delete(guild_key(guild_id))
        removed += await self.store.delete(guild_channels_key(guild_id))
        return removed
