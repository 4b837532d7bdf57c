"""
Unit tests for the Discord API client.
"""

import httpx
import pytest
import respx
from unittest.mock import AsyncMock, MagicMock, patch

from shared.config import get_config
from shared.errors import RateLimitedError, UpstreamConnectionError, UpstreamError
from shared.test_helpers import FakeRedis, make_channel, make_guild, make_user
from service_dashboard.app.caching.store import SharedCacheStore
from service_dashboard.app.ratelimit.gate import RateLimitGate
from service_dashboard.app.adapters.fetch_executor import CachedFetchExecutor
from service_dashboard.app.adapters.discord_client import (
    DiscordApiClient,
    current_user_key,
    guild_channels_key,
    guild_key,
    token_scope,
    user_guilds_key,
)


API = "https://discord.com/api/v10"
TOKEN = "oauth-token-abc"


class TestCacheKeys:
    """Test cases for cache key helpers."""

    def test_keys(self):
        assert user_guilds_key("42") == "discord:guilds:42"
        assert guild_key("1") == "discord:guild:1"
        assert guild_channels_key("1") == "discord:channels:1"

    def test_user_key_hides_token(self):
        key = current_user_key(TOKEN)

        assert TOKEN not in key
        assert key == f"discord:user:{token_scope(TOKEN)}"
        assert len(token_scope(TOKEN)) == 16
        assert token_scope(TOKEN) != token_scope("other-token")


class TestDiscordApiClient:
    """Test cases for DiscordApiClient."""

    @pytest.fixture
    def redis_client(self):
        return FakeRedis()

    @pytest.fixture
    def store(self, redis_client):
        return SharedCacheStore(redis_client)

    @pytest.fixture
    def gate(self, store):
        return RateLimitGate(store)

    @pytest.fixture
    def executor(self, store, gate):
        return CachedFetchExecutor(store, gate, retry_base_delay=0)

    @pytest.fixture
    def client(self, executor, store):
        return DiscordApiClient(executor, store, api_base=API)

    @pytest.mark.asyncio
    async def test_get_user_guilds(self, client, redis_client):
        guilds = [make_guild("1", permissions=1 << 5), make_guild("2")]

        with respx.mock:
            route = respx.get(f"{API}/users/@me/guilds").mock(return_value=httpx.Response(200, json=guilds))

            result = await client.get_user_guilds(TOKEN, "42")

        assert result == guilds
        request = route.calls.last.request
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert request.url.params["with_counts"] == "false"
        assert await redis_client.ttl("client:discord:guilds:42") == 300

    @pytest.mark.asyncio
    async def test_get_user_guilds_force_fresh(self, client, store):
        await store.put(user_guilds_key("42"), [make_guild("old")], 300)

        with respx.mock:
            route = respx.get(f"{API}/users/@me/guilds").mock(
                return_value=httpx.Response(200, json=[make_guild("new")])
            )

            cached = await client.get_user_guilds(TOKEN, "42")
            fresh = await client.get_user_guilds(TOKEN, "42", force_fresh=True)

        assert cached[0]["id"] == "old"
        assert fresh[0]["id"] == "new"
        assert route.call_count == 1
        assert (await store.get(user_guilds_key("42")))[0]["id"] == "new"

    @pytest.mark.asyncio
    async def test_get_user_guilds_falls_back_to_cache(self, client, store):
        """A failed forced refresh still serves the cached list."""
        await store.put(user_guilds_key("42"), [make_guild("1")], 300)

        with respx.mock:
            respx.get(f"{API}/users/@me/guilds").mock(return_value=httpx.Response(429, headers={"Retry-After": "10"}))

            result = await client.get_user_guilds(TOKEN, "42", force_fresh=True)

        assert result == [make_guild("1")]

    @pytest.mark.asyncio
    async def test_get_user_guilds_raises_without_fallback(self, client):
        with respx.mock:
            respx.get(f"{API}/users/@me/guilds").mock(return_value=httpx.Response(429, headers={"Retry-After": "10"}))

            with pytest.raises(RateLimitedError):
                await client.get_user_guilds(TOKEN, "42")

    @pytest.mark.asyncio
    async def test_get_user_guilds_upstream_error_propagates(self, client):
        with respx.mock:
            respx.get(f"{API}/users/@me/guilds").mock(return_value=httpx.Response(401))

            with pytest.raises(UpstreamError):
                await client.get_user_guilds(TOKEN, "42")

    @pytest.mark.asyncio
    async def test_get_user_guilds_counts_stale_fallback(self, executor, store):
        metrics = MagicMock()
        client = DiscordApiClient(executor, store, api_base=API, metrics=metrics)
        await store.put(user_guilds_key("42"), [], 300)

        with patch.object(executor, "fetch_with_policy", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.side_effect = UpstreamConnectionError("discord", "down")

            assert await client.get_user_guilds(TOKEN, "42") == []

        metrics.increment_counter.assert_called_once_with("stale_fallbacks_total", operation="get_user_guilds")

    @pytest.mark.asyncio
    async def test_get_guild(self, client, redis_client):
        guild = {"id": "1", "name": "Alpha", "owner_id": "42"}

        with respx.mock:
            respx.get(f"{API}/guilds/1").mock(return_value=httpx.Response(200, json=guild))

            assert await client.get_guild("1", TOKEN) == guild

        assert await redis_client.ttl("client:discord:guild:1") == 600

    @pytest.mark.asyncio
    async def test_get_guild_returns_none_on_failure(self, client):
        with respx.mock:
            respx.get(f"{API}/guilds/1").mock(return_value=httpx.Response(403))

            assert await client.get_guild("1", TOKEN) is None

    @pytest.mark.asyncio
    async def test_get_guild_channels(self, client):
        channels = [make_channel("10", "support", 4), make_channel("11", "general", parent_id="10")]

        with respx.mock:
            respx.get(f"{API}/guilds/1/channels").mock(return_value=httpx.Response(200, json=channels))

            assert await client.get_guild_channels("1", TOKEN) == channels

    @pytest.mark.asyncio
    async def test_get_guild_channels_empty_on_failure(self, client, gate):
        await gate.record_penalty("/api/v10/guilds/1/channels", 30)

        assert await client.get_guild_channels("1", TOKEN) == []

    @pytest.mark.asyncio
    async def test_get_guild_channels_empty_on_undecodable_body(self, client):
        with respx.mock:
            respx.get(f"{API}/guilds/1/channels").mock(return_value=httpx.Response(
                200, content=b"not gzip at all", headers={"Content-Encoding": "gzip"}
            ))

            assert await client.get_guild_channels("1", TOKEN) == []

    @pytest.mark.asyncio
    async def test_get_current_user(self, client, redis_client):
        user = make_user("42")

        with respx.mock:
            route = respx.get(f"{API}/users/@me").mock(return_value=httpx.Response(200, json=user))

            assert await client.get_current_user(TOKEN) == user
            assert await client.get_current_user(TOKEN) == user

        assert route.call_count == 1
        assert await redis_client.ttl(f"client:{current_user_key(TOKEN)}") == 600

    @pytest.mark.asyncio
    async def test_get_current_user_none_on_failure(self, client):
        with respx.mock:
            respx.get(f"{API}/users/@me").mock(side_effect=httpx.ConnectError("refused"))

            assert await client.get_current_user(TOKEN) is None

    @pytest.mark.asyncio
    async def test_missing_api_base(self, executor, store):
        client = DiscordApiClient(executor, store, api_base=None)

        assert await client.get_guild("1", TOKEN) is None
        with pytest.raises(UpstreamConnectionError):
            await client.get_user_guilds(TOKEN, "42")

    @pytest.mark.asyncio
    async def test_clear_user_cache(self, client, store):
        await store.put(user_guilds_key("42"), [], 300)
        await store.put(current_user_key(TOKEN), make_user("42"), 600)
        await store.put(user_guilds_key("43"), [], 300)

        assert await client.clear_user_cache("42") == 1
        assert await store.exists(current_user_key(TOKEN)) is True

        await store.put(user_guilds_key("42"), [], 300)
        assert await client.clear_user_cache("42", TOKEN) == 2
        assert await store.exists(current_user_key(TOKEN)) is False
        assert await store.exists(user_guilds_key("43")) is True

    @pytest.mark.asyncio
    async def test_clear_guild_cache(self, client, store):
        await store.put(guild_key("1"), {}, 300)
        await store.put(guild_channels_key("1"), [], 300)
        await store.put(guild_key("2"), {}, 300)

        assert await client.clear_guild_cache("1") == 2
        assert await store.exists(guild_key("2")) is True

    def test_tracked_endpoints(self, client):
        assert client.tracked_endpoints() == ["/api/v10/users/@me/guilds", "/api/v10/users/@me"]
        assert client.tracked_endpoints("1")[-2:] == ["/api/v10/guilds/1", "/api/v10/guilds/1/channels"]

    def test_from_config(self, executor, store):
        config = get_config("dashboard", 8000, cache_ttl_guild=120, fetch_max_retries=5)

        client = DiscordApiClient.from_config(executor, store, config)

        assert client.ttl_guild == 120
        assert client.max_retries == 5
        assert client.api_base == "https://discord.com/api/v10"
