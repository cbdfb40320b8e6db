"""
Feature flag evaluation service.

Composes the flag store, the decision cache and the evaluator into the
operations callers use to gate features. Evaluation never raises: every
failure resolves to a disabled result with reason ``evaluation_error``.
"""

import asyncio
import time
from typing import Dict, Any, Iterable, List, Mapping, Optional, Tuple, Union

from opentelemetry import trace

from shared.errors import BackendUnavailableError
from shared.logging import evaluation_context, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .cache.layer import CacheLayer
from .config import FeatureFlagSettings
from .events import EventBus, FlagEvent, FlagEventType
from .flags.evaluator import Evaluator
from .flags.models import (
    FlagDefinition, FlagKey, UserContext, EvaluationResult, BulkEvaluationResult,
    EvaluationSource, FLAG_NOT_FOUND, flag_key, utcnow,
)
from .flags.registry import FlagRegistry
from .stats import EvaluationStats, StatsCollector
from .store.config_store import ChangeOperation, ConfigStore


tracer = trace.get_tracer(__name__)


class FeatureFlagService:
    """Feature flag evaluation and administration.

    One instance per process, constructed explicitly and handed to its
    callers (request handlers, admin tooling).
    """

    def __init__(
        self,
        store: ConfigStore,
        cache: CacheLayer,
        evaluator: Optional[Evaluator] = None,
        stats: Optional[StatsCollector] = None,
        events: Optional[EventBus] = None,
        registry: Optional[FlagRegistry] = None,
        settings: Optional[FeatureFlagSettings] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.settings = settings or FeatureFlagSettings()
        self.store = store
        self.cache = cache
        self.registry = registry or store.registry
        self.evaluator = evaluator or Evaluator(
            environment=self.settings.evaluation_environment,
            max_dependency_depth=self.settings.max_dependency_depth
        )
        self.stats = stats or StatsCollector()
        self.events = events or EventBus()
        self.metrics = metrics or get_metrics_collector(self.settings.service_name)
        self.logger = get_logger("feature_flags.service")

        # Bumped on every store change; decisions computed across a change are not cached
        self._generation = 0

        self.store.add_listener(self._on_flag_changed)

    async def start(self):
        """Start backends and load flag definitions.

        A store that cannot be loaded leaves the service running but
        unhealthy; evaluations fail closed until ``reload`` succeeds.
        """
        await self.cache.start()
        try:
            await self.store.start()
            count = await self.store.load()
        except BackendUnavailableError as e:
            self.logger.error("Feature flag service started without flag definitions", error=e.message)
        else:
            self.metrics.set_flags_loaded(count)

        self.logger.info(
            "Feature flag service started",
            flags_loaded=len(self.store),
            registry_version=self.registry.version,
            cache_backend=self.cache.backend.name,
            store_backend=self.store.repository.name
        )

    async def stop(self):
        """Drain event deliveries and close backends."""
        await self.events.drain(timeout=5.0)
        await self.cache.stop()
        await self.store.stop()
        self.logger.info("Feature flag service stopped")

    # Evaluation

    async def evaluate_flag(
        self,
        flag: FlagKey,
        user: UserContext,
        timeout: Optional[float] = None
    ) -> EvaluationResult:
        """Evaluate one flag for ``user`` within ``timeout`` seconds."""
        key = flag_key(flag)
        deadline = self.settings.evaluation_timeout_seconds if timeout is None else timeout
        start_time = time.perf_counter()

        with tracer.start_as_current_span("feature_flags.evaluate") as span, evaluation_context(user.user_id, key):
            span.set_attribute("feature_flag.key", key)
            try:
                result = await asyncio.wait_for(self._resolve(key, user), deadline)
            except asyncio.TimeoutError:
                self.logger.error(
                    "Flag evaluation deadline exceeded, failing closed",
                    flag=key,
                    timeout_seconds=deadline
                )
                result = self._fail_closed(key, "timeout")
            except Exception as e:
                self.logger.error(
                    "Flag evaluation failed, failing closed",
                    flag=key,
                    error=str(e),
                    exc_info=True
                )
                result = self._fail_closed(key, type(e).__name__)

            elapsed = time.perf_counter() - start_time
            result.evaluation_time_ms = elapsed * 1000
            span.set_attribute("feature_flag.enabled", result.enabled)
            span.set_attribute("feature_flag.reason", result.reason)

        self.stats.record(result.source == EvaluationSource.CACHE, result.evaluation_time_ms)
        self.metrics.record_evaluation(key, result.enabled, result.source.value, elapsed)
        return result

    async def evaluate_flags(
        self,
        flags: Iterable[FlagKey],
        user: UserContext,
        timeout: Optional[float] = None
    ) -> BulkEvaluationResult:
        """Evaluate several flags concurrently; duplicate ids are evaluated once."""
        start_time = time.perf_counter()
        keys = list(dict.fromkeys(flag_key(flag) for flag in flags))

        results = await asyncio.gather(*(self.evaluate_flag(key, user, timeout) for key in keys))

        hits = sum(1 for result in results if result.source == EvaluationSource.CACHE)
        return BulkEvaluationResult(
            user_id=user.user_id,
            evaluations=dict(zip(keys, results)),
            total_evaluation_time_ms=(time.perf_counter() - start_time) * 1000,
            cache_hit_rate=hits / len(results) if results else 0.0
        )

    async def get_enabled_features(self, user: UserContext, timeout: Optional[float] = None) -> List[str]:
        """Every known flag enabled for ``user``, in registry order."""
        bulk = await self.evaluate_flags(list(self.registry), user, timeout)
        return bulk.enabled_flags

    async def has_feature_access(self, flag: FlagKey, user: UserContext, timeout: Optional[float] = None) -> bool:
        result = await self.evaluate_flag(flag, user, timeout)
        return result.enabled

    async def _resolve(self, flag: str, user: UserContext, path: Tuple[str, ...] = ()) -> EvaluationResult:
        if flag not in self.registry:
            return EvaluationResult(flag=flag, enabled=False, reason=FLAG_NOT_FOUND, source=EvaluationSource.DEFAULT)

        cached = await self.cache.get(user.user_id, flag)
        if cached is not None:
            cached.source = EvaluationSource.CACHE
            return cached

        generation = self._generation
        definition = self.store.find(flag)
        result = await self.evaluator.evaluate(
            flag,
            definition,
            user,
            lambda dependency, chain: self._resolve(dependency, user, chain),
            path
        )

        if result.cacheable and generation == self._generation:
            await self.cache.set(user.user_id, flag, result)
            if generation != self._generation:
                # A change landed while the write was in flight
                await self.cache.invalidate(flag)
        return result

    def _fail_closed(self, flag: str, cause: str) -> EvaluationResult:
        self.metrics.record_fail_closed(cause)
        return EvaluationResult.fail_closed(flag)

    # Administration

    async def create_flag(self, definition: Union[FlagDefinition, Mapping[str, Any]]) -> FlagDefinition:
        """Create a flag definition and announce it."""
        created = await self.store.create(definition)
        self._mutated(FlagEventType.CREATED, created.flag, created)
        return created

    async def update_flag(self, flag: FlagKey, changes: Mapping[str, Any]) -> FlagDefinition:
        """Apply a partial update to a flag definition and announce it."""
        updated = await self.store.update(flag, changes)
        self._mutated(FlagEventType.UPDATED, updated.flag, updated)
        return updated

    async def delete_flag(self, flag: FlagKey) -> FlagDefinition:
        """Delete a flag definition and announce it; returns the removed definition."""
        removed = await self.store.delete(flag)
        self._mutated(FlagEventType.DELETED, removed.flag, None)
        return removed

    def get_flag(self, flag: FlagKey) -> FlagDefinition:
        return self.store.get(flag)

    def list_flags(self) -> List[FlagDefinition]:
        return self.store.list()

    async def invalidate_user(self, user_id: str) -> int:
        """Drop every cached decision for ``user_id``, e.g. after a tier change."""
        return await self.cache.invalidate_user(user_id)

    async def reload(self) -> int:
        """Reload definitions from the repository and drop all cached decisions."""
        count = await self.store.load()
        self._generation += 1
        await self.cache.clear()
        self.metrics.set_flags_loaded(count)
        return count

    def _mutated(self, event_type: FlagEventType, flag: str, definition: Optional[FlagDefinition]):
        self.metrics.record_mutation(event_type.value)
        self.metrics.set_flags_loaded(len(self.store))
        self.events.publish(FlagEvent(type=event_type, flag=flag, definition=definition))

    async def _on_flag_changed(self, flag: str, operation: ChangeOperation):
        self._generation += 1
        # Dependents embed this flag's outcome in their cached decisions
        affected = [flag] + self.store.dependents(flag)
        for affected_flag in affected:
            await self.cache.invalidate(affected_flag)

        self.logger.debug("Invalidated decisions after flag change", flag=flag, operation=operation.value,
                          affected=affected)

    # Introspection

    def get_stats(self) -> EvaluationStats:
        return self.stats.snapshot()

    def reset_stats(self):
        self.stats.reset()

    async def health_check(self) -> Dict[str, Any]:
        """Report service health.

        ``unhealthy`` when the store cannot be read, ``degraded`` when only
        the decision cache is unreachable.
        """
        store_reachable, cache_reachable = await asyncio.gather(self.store.ping(), self.cache.ping())

        if not store_reachable or not self.store.loaded:
            status = "unhealthy"
        elif not cache_reachable:
            status = "degraded"
        else:
            status = "healthy"

        self.metrics.record_health_check(status)

        return {
            "status": status,
            "flags_loaded": len(self.store),
            "evaluation_stats": self.stats.snapshot().to_dict(),
            "cache_backend_reachable": cache_reachable,
            "store_backend_reachable": store_reachable,
            "registry_version": self.registry.version,
            "timestamp": utcnow().isoformat()
        }
