"""
Adapters package for the dashboard service.

HTTP clients for the dashboard's upstreams. These adapters encapsulate:

- Base URLs and request shapes
- Cache-first execution and rate-limit compliance (Discord)
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .fetch_executor import CachedFetchExecutor, OutboundCall
from .discord_client import DiscordApiClient
from .bot_api_client import BotApiClient

__all__ = [
    "CachedFetchExecutor",
    "OutboundCall",
    "DiscordApiClient",
    "BotApiClient",
]
