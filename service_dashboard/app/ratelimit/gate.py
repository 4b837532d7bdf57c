"""
Rate-limit gate for outbound Discord calls.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlsplit

from shared.logging import get_logger
from ..caching.store import SharedCacheStore


def endpoint_for(url: str) -> str:
    """Rate-limit bucket for a URL: its path, without query string."""
    return urlsplit(url).path or "/"


@dataclass(frozen=True)
class RateLimitStatus:
    """Gate answer for one endpoint."""

    limited: bool
    retry_after: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"limited": self.limited}
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


class RateLimitGate:
    """Single source of truth for "may endpoint X be called right now"."""

    FLAG_PREFIX = "ratelimit:"
    FLAG_VALUE = "1"

    def __init__(
        self,
        store: SharedCacheStore,
        *,
        max_penalty: int = 60,
        suggested_wait: int = 30,
    ):
        self.store = store
        self.max_penalty = max(1, max_penalty)
        self.suggested_wait = suggested_wait
        self.logger = get_logger("dashboard.rate_limit_gate")

    def _flag_key(self, endpoint: str) -> str:
        return f"{self.FLAG_PREFIX}{endpoint}"

    def clamp_penalty(self, retry_after_seconds: Any) -> int:
        """Clamp an upstream wait into ``[1, max_penalty]`` whole seconds."""
        try:
            seconds = float(retry_after_seconds)
        except (TypeError, ValueError):
            return self.max_penalty
        if math.isnan(seconds):
            return self.max_penalty
        if math.isinf(seconds):
            return self.max_penalty if seconds > 0 else 1
        return max(1, min(math.ceil(seconds), self.max_penalty))

    async def check_rate_limit(self, endpoint: str) -> RateLimitStatus:
        """Report whether ``endpoint`` is currently flagged.

        A flagged endpoint reports the fixed suggested wait rather than the
        remaining penalty.
        """
        if await self.store.exists(self._flag_key(endpoint)):
            return RateLimitStatus(limited=True, retry_after=self.suggested_wait)
        return RateLimitStatus(limited=False)

    async def record_penalty(self, endpoint: str, retry_after_seconds: Any) -> int:
        """Flag ``endpoint`` for the clamped penalty; returns the penalty used."""
        penalty = self.clamp_penalty(retry_after_seconds)
        await self.store.put(self._flag_key(endpoint), self.FLAG_VALUE, penalty)

        self.logger.warning(
            "Rate limit recorded",
            endpoint=endpoint,
            requested=retry_after_seconds,
            penalty=penalty
        )
        return penalty

    async def get_rate_limit_status(self, endpoints: Iterable[str]) -> Dict[str, RateLimitStatus]:
        """Gate status for several endpoints."""
        return {endpoint: await self.check_rate_limit(endpoint) for endpoint in endpoints}
