"""
Feature Flag Service entrypoint.
"""

from typing import Optional

from fastapi import FastAPI

from shared.base_service import BaseService
from shared.metrics import MetricsCollector, get_metrics_collector

from .cache.backend import DecisionCacheBackend
from .cache.layer import CacheLayer
from .cache.memory import InMemoryDecisionCache
from .cache.redis_cache import RedisDecisionCache
from .config import FeatureFlagSettings
from .flags.registry import FlagRegistry
from .service import FeatureFlagService
from .store.config_store import ConfigStore
from .store.memory import InMemoryFlagRepository
from .store.postgres import PostgresFlagRepository
from .store.redis_store import RedisFlagRepository
from .store.repository import FlagRepository


def build_repository(settings: FeatureFlagSettings) -> FlagRepository:
    """Durable flag repository selected by ``store_backend``."""
    if settings.store_backend == "redis":
        return RedisFlagRepository(settings.redis_url)
    if settings.store_backend == "postgres":
        return PostgresFlagRepository(settings.postgres_dsn)
    return InMemoryFlagRepository()


def build_cache_backend(settings: FeatureFlagSettings) -> DecisionCacheBackend:
    """Decision cache backend selected by ``cache_backend``."""
    if settings.cache_backend == "redis":
        return RedisDecisionCache(settings.redis_url)
    return InMemoryDecisionCache(max_entries=settings.cache_max_entries)


def build_service(
    settings: Optional[FeatureFlagSettings] = None,
    registry: Optional[FlagRegistry] = None,
    metrics: Optional[MetricsCollector] = None
) -> FeatureFlagService:
    """Construct a new service from settings. Callers own the instance."""
    settings = settings or FeatureFlagSettings()
    metrics = metrics or get_metrics_collector(settings.service_name)
    registry = registry or FlagRegistry.default(extra=settings.extra_flags, version=settings.registry_version)

    store = ConfigStore(
        build_repository(settings),
        registry=registry,
        seed_defaults=settings.seed_defaults
    )
    cache = CacheLayer(
        build_cache_backend(settings),
        ttl_seconds=settings.cache_ttl_seconds,
        timeout_seconds=settings.cache_timeout_seconds,
        metrics=metrics
    )

    return FeatureFlagService(store, cache, registry=registry, settings=settings, metrics=metrics)


class FeatureFlagServer(BaseService):
    """HTTP surface of the Feature Flag Service: health and metrics."""

    def __init__(self, service: FeatureFlagService):
        self.service = service
        super().__init__(service.settings.service_name, service.settings, service.metrics)

        # Gates look the service up here rather than through a global
        self.app.state.feature_flags = service

    async def startup(self):
        if self.config.enable_metrics and self.config.metrics_port:
            self.metrics.start_metrics_server(self.config.metrics_port)
        await self.service.start()

    async def shutdown(self):
        await self.service.stop()

    async def _check_health(self):
        return await self.service.health_check()


def create_app(service: Optional[FeatureFlagService] = None) -> FastAPI:
    """Create the feature flag application."""
    server = FeatureFlagServer(service or build_service())
    return server.app


if __name__ == "__main__":
    server = FeatureFlagServer(build_service())
    server.run()
