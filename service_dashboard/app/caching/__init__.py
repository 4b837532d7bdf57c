"""
Dashboard caching package.

Holds the shared cache store used both as the Discord response cache and
as the home of rate-limit flags. Store failures never reach callers.
"""

from .store import SharedCacheStore, StoreResult, create_redis_client

__all__ = ["SharedCacheStore", "StoreResult", "create_redis_client"]
