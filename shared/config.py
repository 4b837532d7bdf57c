"""
Shared configuration management for the TicketMesh dashboard backend.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="TICKETMESH_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Shared cache store
    redis_url: Optional[str] = Field(default=None)
    cache_prefix: str = Field(default="client:")
    redis_socket_timeout: float = Field(default=5.0)

    # Discord REST API
    discord_api_base: str = Field(default="https://discord.com/api/v10")
    discord_timeout: float = Field(default=10.0)
    discord_user_agent: str = Field(default="TicketMesh-Dashboard/1.0")

    # Rate limiting
    rate_limit_max_penalty: int = Field(default=60)
    rate_limit_suggested_wait: int = Field(default=30)
    rate_limit_default_retry_after: int = Field(default=60)
    rate_limit_proactive_throttle: bool = Field(default=True)

    # Cache TTLs (seconds)
    cache_ttl_user_guilds: int = Field(default=300)
    cache_ttl_guild: int = Field(default=600)
    cache_ttl_guild_channels: int = Field(default=300)
    cache_ttl_current_user: int = Field(default=600)

    # Outbound retry budget
    fetch_max_retries: int = Field(default=3)
    fetch_retry_base_delay: float = Field(default=0.5)

    # Bot backend
    bot_api_base_url: Optional[str] = Field(default=None)
    bot_api_secret: Optional[str] = Field(default=None)
    bot_presence_timeout: float = Field(default=5.0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
