"""
Configuration for the Feature Flag Service.
"""

from typing import List, Literal, Optional

from pydantic import Field

from shared.config import BaseConfig
from .flags.registry import REGISTRY_VERSION


class FeatureFlagSettings(BaseConfig):
    """Feature flag settings, read from ``FLAGS_*`` environment variables."""

    environment: Optional[str] = Field(default=None, description="Environment matched against flag conditions; defaults to env")

    store_backend: Literal["memory", "redis", "postgres"] = Field(default="memory", description="Durable flag repository")
    cache_backend: Literal["memory", "redis"] = Field(default="memory", description="Decision cache backend")

    cache_ttl_seconds: int = Field(default=300, ge=0, description="Decision cache TTL")
    cache_timeout_seconds: float = Field(default=0.1, gt=0, description="Timeout for each cache backend call")
    cache_max_entries: int = Field(default=100_000, gt=0, description="Capacity of the in-memory cache")

    evaluation_timeout_seconds: float = Field(default=0.5, gt=0, description="Default deadline for an evaluation call")
    max_dependency_depth: int = Field(default=10, ge=1, description="Maximum dependency nesting during evaluation")

    seed_defaults: bool = Field(default=True, description="Seed default flag definitions on load")
    registry_version: str = Field(default=REGISTRY_VERSION, description="Version tag of the known flag set")
    extra_flags: List[str] = Field(default_factory=list, description="Flag ids known in addition to the built-in set")

    @property
    def evaluation_environment(self) -> str:
        return self.environment or self.env
