"""
Shared configuration management for the response cache layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="RESPONSE_CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend
    backend_url: str = Field(default="redis://localhost:6379/0")

    # Global cache options
    enabled: bool = Field(default=True)
    name: str = Field(default="response-cache")
    timezone: Optional[str] = Field(default=None)
    key_helper: Optional[str] = Field(default=None)
    key_function: Optional[str] = Field(default=None)
    ttl_helper: Optional[str] = Field(default=None)
    ttl_function: Optional[str] = Field(default=None)
    helpers_dir: str = Field(default="api/helpers")
    app_root: str = Field(default=".")

    # Store protection
    store_timeout_seconds: Optional[float] = Field(default=1.0)
    max_pending_writes: int = Field(default=100)
    max_body_bytes: Optional[int] = Field(default=None)
    breaker_failure_threshold: int = Field(default=5)
    breaker_recovery_seconds: float = Field(default=30.0)


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
