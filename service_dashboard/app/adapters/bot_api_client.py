"""
Bot backend client for the dashboard.

The bot process owns guild ticket configuration and knows which guilds it
has joined; the dashboard reaches it over HTTP with a shared secret.
"""

import asyncio
from typing import Any, Dict, Iterable, Optional

import httpx

from shared.logging import get_logger
from shared.errors import AuthenticationError, UpstreamConnectionError, UpstreamError
from shared.retry import retry_on_exception, RetryConfig, RetryError


class BotApiClient:
    """Client for the bot service's internal API."""

    SERVICE = "bot"

    def __init__(self, base_url: Optional[str], api_secret: Optional[str] = None,
                 *, timeout: float = 10.0, presence_timeout: float = 5.0):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_secret = api_secret
        self.timeout = timeout
        self.presence_timeout = presence_timeout
        self.logger = get_logger("dashboard.bot_api_client")

        if not api_secret:
            self.logger.warning("Bot API secret not configured - requests will be unauthenticated")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_secret:
            headers["Authorization"] = f"Bearer {self.api_secret}"
        return headers

    def _url(self, path: str) -> str:
        if not self.base_url:
            raise UpstreamConnectionError(self.SERVICE, "Bot API base URL not configured")
        return f"{self.base_url}{path}"

    async def _request(self, method: str, path: str, *, json: Any = None,
                       timeout: Optional[float] = None) -> Any:
        url = self._url(path)

        @retry_on_exception((httpx.TransportError,), config=RetryConfig(max_attempts=2, base_delay=0.5))
        async def _send() -> httpx.Response:
            async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
                return await client.request(method, url, headers=self._headers(), json=json)

        try:
            response = await _send()
        except RetryError as e:
            self.logger.error("Bot API unreachable", path=path, error=str(e.last_exception))
            raise UpstreamConnectionError(self.SERVICE, f"request to {path} failed",
                                          details={"error": str(e.last_exception)}) from e
        except httpx.HTTPError as e:
            self.logger.error("Bot API request failed", path=path, error=str(e))
            raise UpstreamConnectionError(self.SERVICE, f"request to {path} failed",
                                          details={"error": str(e)}) from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                "Bot API rejected the dashboard credentials",
                details={"status_code": response.status_code}
            )
        if not response.is_success:
            raise UpstreamError(self.SERVICE, response.status_code, f"HTTP {response.status_code} on {path}")

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(self.SERVICE, response.status_code, f"invalid JSON body on {path}") from e

    async def get_guild_config(self, guild_id: str) -> Optional[Dict[str, Any]]:
        """Ticket configuration stored for ``guild_id``, or None if unset."""
        try:
            return await self._request("GET", f"/api/guilds/{guild_id}/config")
        except UpstreamError as e:
            if e.upstream_status == 404:
                return None
            raise

    async def upsert_guild_config(self, guild_id: str, config: Dict[str, Any]) -> Dict[str, Any]:
        """Create or replace the ticket configuration for ``guild_id``."""
        result = await self._request("PUT", f"/api/guilds/{guild_id}/config", json=config)
        self.logger.info("Guild config saved", guild_id=guild_id)
        return result if isinstance(result, dict) else {"guildId": guild_id, **config}

    async def check_presence(self, guild_ids: Iterable[str]) -> Dict[str, bool]:
        """Which of ``guild_ids`` the bot has joined.

        Bounded by ``presence_timeout``; raises on timeout like any other
        transport failure.
        """
        ids = list(guild_ids)
        if not ids:
            return {}

        try:
            data = await asyncio.wait_for(
                self._request("POST", "/api/bot/presence", json={"guildIds": ids},
                              timeout=self.presence_timeout),
                timeout=self.presence_timeout
            )
        except asyncio.TimeoutError as e:
            raise UpstreamConnectionError(self.SERVICE, "presence check timed out") from e

        presence: Dict[str, bool] = {}
        for check in data or []:
            if isinstance(check, dict) and "guildId" in check:
                presence[str(check["guildId"])] = bool(check.get("present"))
        return presence
