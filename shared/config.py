"""
Shared configuration management for the Carrier Access Layer.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CARRIER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Upstream carrier API
    carrier_api_url: str = Field(default="https://api.novapost.com/v.1.0")
    accept_language: str = Field(default="uk")
    http_timeout_seconds: float = Field(default=30.0)

    # Token lifecycle
    token_refresh_buffer_seconds: float = Field(default=300.0)
    token_fallback_ttl_seconds: float = Field(default=3600.0)

    # Client registry
    client_registry_max_size: int = Field(default=100)
    client_idle_ttl_seconds: float = Field(default=7200.0)

    # List fetch cache
    fetch_cache_ttl_seconds: float = Field(default=60.0)
    fetch_cache_max_entries: int = Field(default=200)

    # Analytics
    analytics_cache_ttl_seconds: float = Field(default=60.0)
    analytics_cache_max_entries: int = Field(default=100)
    analytics_fetch_concurrency: int = Field(default=4)
    analytics_max_pages: int = Field(default=10)
    analytics_per_page: int = Field(default=100)
    analytics_timeout_seconds: float = Field(default=30.0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str = "carrier"
    port: int = 8000
    host: str = "0.0.0.0"


def get_config(service_name: str = "carrier", port: int = 8000, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
