"""
Shared configuration management for the feature flag service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLAGS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Service
    service_name: str = Field(default="feature_flags", description="Logical service name")
    host: str = Field(default="0.0.0.0", description="Bind address for the HTTP surface")
    port: int = Field(default=8013, description="Bind port for the HTTP surface")

    # Environment
    env: str = Field(default="local", description="Deployment environment name")
    log_level: str = Field(default="info", description="Root log level")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    postgres_dsn: str = Field(default="postgres://localhost:5432/flags", description="PostgreSQL DSN")

    # Observability
    enable_metrics: bool = Field(default=True, description="Expose metrics on /metrics and metrics_port")
    metrics_port: Optional[int] = Field(default=None, description="Standalone metrics server port")
