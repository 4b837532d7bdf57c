"""
Unit tests for the rate-limit gate.
"""

import math

import pytest

from shared.test_helpers import FakeRedis
from service_dashboard.app.caching.store import SharedCacheStore
from service_dashboard.app.ratelimit.gate import RateLimitGate, RateLimitStatus, endpoint_for


class TestEndpointFor:
    """Test cases for endpoint_for."""

    def test_path_only(self):
        assert endpoint_for("https://discord.com/api/v10/users/@me/guilds?with_counts=false") == \
            "/api/v10/users/@me/guilds"

    def test_empty_path(self):
        assert endpoint_for("https://discord.com") == "/"


class TestRateLimitGate:
    """Test cases for RateLimitGate."""

    @pytest.fixture
    def redis_client(self):
        return FakeRedis()

    @pytest.fixture
    def gate(self, redis_client):
        return RateLimitGate(SharedCacheStore(redis_client))

    @pytest.mark.parametrize("requested,expected", [
        (45, 45),
        (0.3, 1),
        (1.2, 2),
        (0, 1),
        (-5, 1),
        (60, 60),
        (3600, 60),
        (math.inf, 60),
        (math.nan, 60),
        ("12", 12),
        ("soon", 60),
        (None, 60),
    ])
    def test_clamp_penalty(self, gate, requested, expected):
        assert gate.clamp_penalty(requested) == expected

    @pytest.mark.asyncio
    async def test_unflagged_endpoint_is_open(self, gate):
        status = await gate.check_rate_limit("/api/v10/users/@me/guilds")

        assert status == RateLimitStatus(limited=False)
        assert status.to_dict() == {"limited": False}

    @pytest.mark.asyncio
    async def test_record_penalty_flags_endpoint(self, gate, redis_client):
        penalty = await gate.record_penalty("/api/v10/users/@me/guilds", 45)

        assert penalty == 45
        assert await gate.store.get("ratelimit:/api/v10/users/@me/guilds") == "1"
        assert await redis_client.get("client:ratelimit:/api/v10/users/@me/guilds") == '"1"'
        assert await redis_client.ttl("client:ratelimit:/api/v10/users/@me/guilds") == 45

    @pytest.mark.asyncio
    async def test_flagged_endpoint_reports_suggested_wait(self, gate):
        await gate.record_penalty("/api/v10/users/@me/guilds", 5)

        status = await gate.check_rate_limit("/api/v10/users/@me/guilds")

        assert status.limited is True
        assert status.retry_after == 30
        assert status.to_dict() == {"limited": True, "retry_after": 30}

    @pytest.mark.asyncio
    async def test_penalty_is_capped(self, gate, redis_client):
        penalty = await gate.record_penalty("/api/v10/guilds/1", 3600)

        assert penalty == 60
        assert await redis_client.ttl("client:ratelimit:/api/v10/guilds/1") == 60

    @pytest.mark.asyncio
    async def test_flag_expires(self, gate, redis_client):
        await gate.record_penalty("/api/v10/guilds/1", 10)

        redis_client.advance(10)

        assert (await gate.check_rate_limit("/api/v10/guilds/1")).limited is False

    @pytest.mark.asyncio
    async def test_endpoints_are_independent(self, gate):
        await gate.record_penalty("/api/v10/guilds/1", 10)

        assert (await gate.check_rate_limit("/api/v10/guilds/1")).limited is True
        assert (await gate.check_rate_limit("/api/v10/guilds/2")).limited is False

    @pytest.mark.asyncio
    async def test_store_outage_reports_open(self, gate, redis_client):
        await gate.record_penalty("/api/v10/guilds/1", 10)
        redis_client.fail = True

        assert (await gate.check_rate_limit("/api/v10/guilds/1")).limited is False

    @pytest.mark.asyncio
    async def test_custom_limits(self, redis_client):
        gate = RateLimitGate(SharedCacheStore(redis_client), max_penalty=20, suggested_wait=5)

        assert await gate.record_penalty("/x", 45) == 20
        assert (await gate.check_rate_limit("/x")).retry_after == 5

    @pytest.mark.asyncio
    async def test_get_rate_limit_status(self, gate):
        await gate.record_penalty("/a", 10)

        statuses = await gate.get_rate_limit_status(["/a", "/b"])

        assert statuses["/a"].limited is True
        assert statuses["/b"].limited is False
