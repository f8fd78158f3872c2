"""
Shared configuration management for the World Monitor gateway.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias=AliasChoices("MONITOR_ENV", "env"))
    log_level: str = Field(default="info", validation_alias=AliasChoices("MONITOR_LOG_LEVEL", "log_level"))

    # Key/value store; unset disables the response cache
    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MONITOR_REDIS_URL", "REDIS_URL", "redis_url"),
    )

    # Response cache
    cache_default_ttl: int = Field(
        default=120,
        validation_alias=AliasChoices("MONITOR_CACHE_DEFAULT_TTL", "cache_default_ttl"),
    )
    cache_policy_file: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MONITOR_CACHE_POLICY_FILE", "cache_policy_file"),
    )

    # Handler routes
    route_table: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MONITOR_ROUTE_TABLE", "route_table"),
    )
    max_body_bytes: int = Field(
        default=5 * 1024 * 1024,
        validation_alias=AliasChoices("MONITOR_MAX_BODY_BYTES", "max_body_bytes"),
    )

    # AIS relay; unset API key disables the relay
    relay_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MONITOR_RELAY_API_KEY", "AISSTREAM_API_KEY", "relay_api_key"),
    )
    relay_url: str = Field(
        default="wss://stream.aisstream.io/v0/stream",
        validation_alias=AliasChoices("MONITOR_RELAY_URL", "relay_url"),
    )
    relay_reconnect_delay: float = Field(
        default=5.0,
        validation_alias=AliasChoices("MONITOR_RELAY_RECONNECT_DELAY", "relay_reconnect_delay"),
    )
    relay_log_every: int = Field(
        default=1000,
        validation_alias=AliasChoices("MONITOR_RELAY_LOG_EVERY", "relay_log_every"),
    )
    relay_send_timeout: float = Field(
        default=2.0,
        validation_alias=AliasChoices("MONITOR_RELAY_SEND_TIMEOUT", "relay_send_timeout"),
    )

    # Security
    cors_origins: List[str] = Field(
        default_factory=lambda: ["*"],
        validation_alias=AliasChoices("MONITOR_CORS_ORIGINS", "cors_origins"),
    )


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = Field(default=3000, validation_alias=AliasChoices("PORT", "port"))
    host: str = "0.0.0.0"


def get_config(service_name: str, port: Optional[int] = None, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    if port is not None:
        overrides.setdefault("port", port)
    return ServiceConfig(service_name=service_name, **overrides)
