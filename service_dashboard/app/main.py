"""
Dashboard backend service for TicketMesh.

Proxies the dashboard's Discord reads through the cached, rate-limit aware
fetch executor and forwards ticket configuration to the bot backend.
"""

from typing import Any, Dict, List, Optional

import httpx
import redis.asyncio as redis
from fastapi import Header, HTTPException, Query, Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import (
    AuthenticationError,
    AuthorizationError,
    DashboardException,
    UpstreamConnectionError,
    ValidationError,
)
from shared.logging import set_user_context
from .caching.store import SharedCacheStore, create_redis_client
from .ratelimit.gate import RateLimitGate
from .adapters.fetch_executor import CachedFetchExecutor
from .adapters.discord_client import DiscordApiClient
from .adapters.bot_api_client import BotApiClient
from .domain.models import CacheRefreshResponse, GuildTicketConfig
from .domain.permissions import filter_by_permission, has_permission


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the Discord OAuth access token from an Authorization header."""
    if not authorization:
        raise AuthenticationError("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must be 'Bearer <token>'")
    return token.strip()


def snowflake(value: str, field: str = "guild_id") -> str:
    """Reject ids that are not Discord snowflakes before they reach a URL."""
    if not value.isdigit() or len(value) > 20:
        raise ValidationError(f"Invalid {field}", details={field: value})
    return value


class DashboardService(BaseService):
    """Dashboard backend service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        redis_client: Optional[redis.Redis] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        bot_client: Optional[BotApiClient] = None,
    ):
        super().__init__("dashboard", 8000, config or get_config("dashboard", 8000))

        if redis_client is None:
            try:
                redis_client = create_redis_client(self.config.redis_url, self.config.redis_socket_timeout)
            except UpstreamConnectionError as e:
                self.logger.warning("Shared store unavailable", error=e.message)

        self.store = SharedCacheStore(redis_client, prefix=self.config.cache_prefix)
        self.gate = RateLimitGate(
            self.store,
            max_penalty=self.config.rate_limit_max_penalty,
            suggested_wait=self.config.rate_limit_suggested_wait
        )
        self.executor = CachedFetchExecutor(
            self.store,
            self.gate,
            http_client=http_client,
            timeout=self.config.discord_timeout,
            user_agent=self.config.discord_user_agent,
            default_retry_after=self.config.rate_limit_default_retry_after,
            retry_base_delay=self.config.fetch_retry_base_delay,
            proactive_throttle=self.config.rate_limit_proactive_throttle,
            metrics=self.metrics
        )
        self.discord = DiscordApiClient.from_config(self.executor, self.store, self.config, metrics=self.metrics)
        self.bot = bot_client or BotApiClient(
            self.config.bot_api_base_url,
            self.config.bot_api_secret,
            presence_timeout=self.config.bot_presence_timeout
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.executor.close()
            await self.store.close()

        self._setup_dashboard_routes()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check dashboard dependencies."""
        if not self.store.enabled:
            redis_status = "disabled"
        else:
            redis_status = "ok" if await self.store.ping() else "error"

        return {
            "redis": redis_status,
            "bot_api": "configured" if self.bot.base_url else "not_configured"
        }

    async def _resolve_user(self, access_token: str) -> Dict[str, Any]:
        user = await self.discord.get_current_user(access_token)
        if not user or not user.get("id"):
            raise AuthenticationError("Discord session could not be resolved")
        set_user_context(str(user["id"]))
        return user

    async def _require_guild_manager(self, access_token: str, guild_id: str) -> Dict[str, Any]:
        """Resolve the caller and require MANAGE_GUILD (or ownership) in ``guild_id``."""
        set_user_context(guild_id=guild_id)
        user = await self._resolve_user(access_token)
        guilds = await self.discord.get_user_guilds(access_token, str(user["id"]))
        guild = next((g for g in guilds if str(g.get("id")) == guild_id), None)
        if guild is None or not has_permission(guild, "MANAGE_GUILD"):
            self.logger.warning("Guild access denied", guild_id=guild_id, user_id=user["id"])
            raise AuthorizationError(
                f"Manage Server permission required in guild '{guild_id}'",
                details={"guild_id": guild_id}
            )
        return user

    async def _with_presence(self, guilds: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Annotate guilds with ``bot_present``; unchanged when the bot cannot say."""
        try:
            presence = await self.bot.check_presence(str(guild["id"]) for guild in guilds if "id" in guild)
        except DashboardException as e:
            self.logger.warning("Bot presence check failed", error=e.message)
            return guilds

        return [
            {**guild, "bot_present": presence.get(str(guild.get("id")), False)}
            for guild in guilds
        ]

    def _setup_dashboard_routes(self):
        """Set up dashboard API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Liveness plus shared store reachability."""
            store_ok = await self.store.ping() if self.store.enabled else False
            return {
                "status": "ok",
                "store": "ok" if store_ok else ("disabled" if not self.store.enabled else "error")
            }

        @self.app.get("/api/auth/me")
        async def get_me(authorization: Optional[str] = Header(None)):
            """Discord user behind the caller's access token."""
            return await self._resolve_user(bearer_token(authorization))

        @self.app.get("/api/guilds")
        async def list_guilds(
            request: Request,
            fresh: Optional[str] = Query(None),
            authorization: Optional[str] = Header(None)
        ):
            """Guilds the caller can manage."""
            access_token = bearer_token(authorization)
            user = await self._resolve_user(access_token)

            cache_control = request.headers.get("Cache-Control", "")
            force_fresh = fresh == "1" or "no-cache" in cache_control.lower()

            guilds = await self.discord.get_user_guilds(access_token, str(user["id"]), force_fresh=force_fresh)
            manageable = filter_by_permission(guilds, "MANAGE_GUILD")
            if manageable:
                manageable = await self._with_presence(manageable)

            return {"guilds": manageable, "count": len(manageable)}

        @self.app.get("/api/guilds/{guild_id}")
        async def get_guild(guild_id: str, authorization: Optional[str] = Header(None)):
            guild = await self.discord.get_guild(snowflake(guild_id), bearer_token(authorization))
            if guild is None:
                raise HTTPException(status_code=404, detail=f"Guild '{guild_id}' not available")
            return guild

        @self.app.get("/api/guilds/{guild_id}/channels")
        async def get_guild_channels(guild_id: str, authorization: Optional[str] = Header(None)):
            channels = await self.discord.get_guild_channels(snowflake(guild_id), bearer_token(authorization))
            return {"guild_id": guild_id, "channels": channels}

        @self.app.get("/api/guilds/{guild_id}/config")
        async def get_guild_config(guild_id: str, authorization: Optional[str] = Header(None)):
            """Ticket configuration held by the bot backend."""
            guild_id = snowflake(guild_id)
            await self._require_guild_manager(bearer_token(authorization), guild_id)
            config = await self.bot.get_guild_config(guild_id)
            if config is None:
                raise HTTPException(status_code=404, detail=f"No ticket configuration for guild '{guild_id}'")
            return config

        @self.app.put("/api/guilds/{guild_id}/config")
        async def put_guild_config(
            guild_id: str,
            config: GuildTicketConfig,
            authorization: Optional[str] = Header(None)
        ):
            """Save ticket configuration and drop the guild's cached reads."""
            guild_id = snowflake(guild_id)
            await self._require_guild_manager(bearer_token(authorization), guild_id)
            saved = await self.bot.upsert_guild_config(guild_id, config.model_dump(by_alias=True))
            await self.discord.clear_guild_cache(guild_id)
            return saved

        @self.app.post("/api/cache/refresh", response_model=CacheRefreshResponse)
        async def refresh_cache(authorization: Optional[str] = Header(None)):
            """Forget everything cached for the caller."""
            access_token = bearer_token(authorization)
            user = await self._resolve_user(access_token)
            user_id = str(user["id"])
            cleared = await self.discord.clear_user_cache(user_id, access_token)
            self.logger.info("User cache cleared", user_id=user_id, cleared=cleared)
            return CacheRefreshResponse(user_id=user_id, cleared=cleared)

        @self.app.get("/api/discord/rate-limits")
        async def rate_limits(
            guild_id: Optional[str] = Query(None),
            authorization: Optional[str] = Header(None)
        ):
            """Gate status for the Discord routes the dashboard uses."""
            await self._resolve_user(bearer_token(authorization))
            endpoints = self.discord.tracked_endpoints(snowflake(guild_id) if guild_id else None)
            statuses = await self.gate.get_rate_limit_status(endpoints)
            return {
                "endpoints": {endpoint: status.to_dict() for endpoint, status in statuses.items()},
                "store_enabled": self.store.enabled
            }


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = DashboardService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = DashboardService()
    service.run()
