"""
Cached fetch executor for outbound Discord calls.

One call runs strictly in this order:

    cache check -> gate check -> HTTP request -> record outcome

A cache hit returns before the gate is consulted. A blocked gate fails
before any network traffic. A 429 records a penalty and is never retried
here; only transport failures are retried, within the call's budget.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, TYPE_CHECKING

import httpx

from shared.logging import get_logger
from shared.errors import RateLimitedError, UpstreamConnectionError, UpstreamError
from shared.retry import RetryConfig, RetryError, retry_async
from ..caching.store import SharedCacheStore
from ..ratelimit.gate import RateLimitGate, endpoint_for

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


LOW_REMAINING_THRESHOLD = 5


@dataclass
class OutboundCall:
    """Everything needed to perform one outbound call, consumed once."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    json: Optional[Any] = None
    cache_key: Optional[str] = None
    cache_ttl: int = 300
    max_retries: int = 3
    cache_type: str = "api"

    @property
    def endpoint(self) -> str:
        return endpoint_for(self.url)


class CachedFetchExecutor:
    """Runs outbound calls with cache-first semantics and rate-limit compliance."""

    def __init__(
        self,
        store: SharedCacheStore,
        gate: RateLimitGate,
        *,
        service: str = "discord",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        user_agent: str = "TicketMesh-Dashboard/1.0",
        default_retry_after: int = 60,
        retry_base_delay: float = 0.5,
        proactive_throttle: bool = True,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.gate = gate
        self.service = service
        self.timeout = timeout
        self.user_agent = user_agent
        self.default_retry_after = default_retry_after
        self.retry_base_delay = retry_base_delay
        self.proactive_throttle = proactive_throttle
        self.metrics = metrics
        self.logger = get_logger("dashboard.fetch_executor")
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_with_policy(self, call: OutboundCall, *, bypass_cache: bool = False) -> Any:
        """Serve ``call`` from cache or perform it under the rate-limit gate.

        ``bypass_cache`` skips the cache read only; a successful response is
        still written through.

        Raises:
            RateLimitedError: the gate is closed for the endpoint, or the
                upstream answered 429.
            UpstreamConnectionError: transport failure after the retry budget,
                or any other httpx failure such as an undecodable body.
            UpstreamError: any other non-2xx response, or a non-JSON body.
        """
        if call.cache_key and not bypass_cache:
            cached = await self.store.get(call.cache_key)
            if cached is not None:
                self.logger.debug("Cache hit", cache_key=call.cache_key)
                self._count("cache_hits_total", cache_type=call.cache_type)
                return cached
            self._count("cache_misses_total", cache_type=call.cache_type)

        endpoint = call.endpoint
        status = await self.gate.check_rate_limit(endpoint)
        if status.limited:
            self.logger.warning("Outbound call blocked by rate-limit gate", endpoint=endpoint,
                                retry_after=status.retry_after)
            self._count("rate_limit_blocks_total", endpoint=endpoint)
            raise RateLimitedError(status.retry_after, endpoint)

        response = await self._execute(call, endpoint)

        if response.is_success:
            body = self._decode(response, endpoint)
            if call.cache_key and body is not None:
                await self.store.put(call.cache_key, body, call.cache_ttl)
            await self._inspect_bucket(response, endpoint)
            self._count("upstream_requests_total", endpoint=endpoint, outcome="success")
            return body

        if response.status_code == 429:
            retry_after = self._parse_retry_after(response)
            penalty = await self.gate.record_penalty(endpoint, retry_after)
            self._count("upstream_rate_limits_total", endpoint=endpoint)
            self._count("upstream_requests_total", endpoint=endpoint, outcome="rate_limited")
            raise RateLimitedError(penalty, endpoint, message=f"Discord rate limited {endpoint}, retry after {penalty}s")

        self._count("upstream_requests_total", endpoint=endpoint, outcome="error")
        self.logger.error("Upstream error", endpoint=endpoint, status_code=response.status_code)
        raise UpstreamError(
            self.service,
            response.status_code,
            f"HTTP {response.status_code} on {endpoint}",
            details={"endpoint": endpoint}
        )

    async def _execute(self, call: OutboundCall, endpoint: str) -> httpx.Response:
        """Issue the request, retrying transport failures only."""
        client = await self._get_client()
        headers = {"User-Agent": self.user_agent, "Accept": "application/json", **call.headers}

        async def _send() -> httpx.Response:
            return await client.request(
                call.method,
                call.url,
                headers=headers,
                params=call.params,
                json=call.json
            )

        retry_config = RetryConfig(
            max_attempts=call.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=5.0
        )

        start = time.perf_counter()
        try:
            return await retry_async(_send, (httpx.TransportError,), retry_config, name=f"{self.service}{endpoint}")
        except RetryError as e:
            self._count("upstream_requests_total", endpoint=endpoint, outcome="connection_error")
            raise UpstreamConnectionError(
                self.service,
                f"request to {endpoint} failed: {e.last_exception}",
                details={"endpoint": endpoint, "attempts": e.attempts}
            ) from e
        except httpx.HTTPError as e:
            # non-transport httpx failures are not retried
            self._count("upstream_requests_total", endpoint=endpoint, outcome="connection_error")
            raise UpstreamConnectionError(
                self.service,
                f"request to {endpoint} failed: {e}",
                details={"endpoint": endpoint, "error_type": type(e).__name__}
            ) from e
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "upstream_request_duration_seconds",
                    time.perf_counter() - start,
                    endpoint=endpoint
                )

    def _decode(self, response: httpx.Response, endpoint: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                self.service,
                response.status_code,
                f"invalid JSON body on {endpoint}",
                details={"endpoint": endpoint}
            ) from e

    def _parse_retry_after(self, response: httpx.Response) -> float:
        """Upstream wait in seconds: header first, then the JSON body."""
        candidates = [response.headers.get("Retry-After")]
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            candidates.append(body.get("retry_after"))

        for candidate in candidates:
            seconds = _to_seconds(candidate)
            if seconds is not None:
                return seconds
        return float(self.default_retry_after)

    async def _inspect_bucket(self, response: httpx.Response, endpoint: str):
        """Warn on a draining bucket; flag the endpoint when it is empty."""
        remaining = _to_seconds(response.headers.get("X-RateLimit-Remaining"))
        if remaining is None:
            return

        if remaining < LOW_REMAINING_THRESHOLD:
            self.logger.warning("Low remaining requests", endpoint=endpoint, remaining=int(remaining))

        if remaining == 0 and self.proactive_throttle:
            reset_after = _to_seconds(response.headers.get("X-RateLimit-Reset-After"))
            if reset_after is not None and reset_after > 0:
                await self.gate.record_penalty(endpoint, reset_after)

    def _count(self, metric_name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)


def _to_seconds(value: Any) -> Optional[float]:
    """Parse a non-negative number of seconds, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(seconds) or seconds < 0:
        return None
    return seconds
