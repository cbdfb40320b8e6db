"""
Decision cache layer for the Feature Flag Service.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from shared.errors import BackendUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..flags.models import EvaluationResult
from .backend import DecisionCacheBackend


DEFAULT_TTL_SECONDS = 300  # 5 minutes
DEFAULT_TIMEOUT_SECONDS = 0.1


class CacheLayer:
    """Per-(user, flag) decision cache with degraded-mode handling.

    Every backend call runs under its own timeout. Failures and timeouts are
    logged, counted and turned into a miss or a no-op; nothing here raises to
    the evaluation path.
    """

    def __init__(
        self,
        backend: DecisionCacheBackend,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        metrics: Optional[MetricsCollector] = None
    ):
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.logger = get_logger("feature_flags.cache")
        self.backend_reachable = True

    async def start(self):
        await self.backend.start()

    async def stop(self):
        await self.backend.stop()

    async def get(self, user_id: str, flag: str) -> Optional[EvaluationResult]:
        """Return the cached result or None on miss or backend failure."""
        payload = await self._call("get", lambda: self.backend.get(user_id, flag), None)
        if payload is None:
            return None

        try:
            return EvaluationResult.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning("Discarding unreadable cached decision", user_id=user_id, flag=flag, error=str(e))
            return None

    async def set(self, user_id: str, flag: str, result: EvaluationResult, ttl: Optional[int] = None) -> bool:
        """Cache ``result``; returns False if the backend did not take it."""
        ttl_seconds = self.ttl_seconds if ttl is None else ttl
        return await self._call(
            "set",
            lambda: self._set(user_id, flag, result, ttl_seconds),
            False
        )

    async def invalidate(self, flag: str) -> int:
        """Remove every cached decision for ``flag``."""
        removed = await self._call("invalidate", lambda: self.backend.delete_by_flag(flag), None)
        if removed is None:
            self.logger.error("Flag cache invalidation failed, entries may be stale until TTL", flag=flag)
            return 0

        self.logger.debug("Invalidated flag decisions", flag=flag, count=removed)
        return removed

    async def invalidate_user(self, user_id: str) -> int:
        """Remove every cached decision for ``user_id``."""
        removed = await self._call("invalidate_user", lambda: self.backend.delete_by_user(user_id), None)
        if removed is None:
            self.logger.error("User cache invalidation failed, entries may be stale until TTL", user_id=user_id)
            return 0

        self.logger.info("Invalidated user decisions", user_id=user_id, count=removed)
        return removed

    async def clear(self) -> bool:
        return await self._call("clear", self._clear, False)

    async def ping(self) -> bool:
        return await self._call("ping", self._ping, False)

    async def _ping(self) -> bool:
        if not await self.backend.ping():
            raise BackendUnavailableError(self.backend.name, "ping failed")
        return True

    async def _set(self, user_id: str, flag: str, result: EvaluationResult, ttl_seconds: int) -> bool:
        await self.backend.set(user_id, flag, result.to_dict(), ttl_seconds)
        return True

    async def _clear(self) -> bool:
        await self.backend.clear()
        return True

    async def _call(self, operation: str, call: Callable[[], Awaitable[Any]], default: Any) -> Any:
        try:
            value = await asyncio.wait_for(call(), self.timeout_seconds)
        except asyncio.TimeoutError:
            self._degraded(operation, "timeout")
            return default
        except Exception as e:
            self._degraded(operation, str(e))
            return default

        if not self.backend_reachable:
            self.logger.info("Decision cache recovered", backend=self.backend.name)
        self.backend_reachable = True
        return value

    def _degraded(self, operation: str, error: str):
        self.backend_reachable = False
        self.logger.warning(
            "Decision cache degraded",
            backend=self.backend.name,
            operation=operation,
            timeout_seconds=self.timeout_seconds,
            error=error
        )
        if self.metrics:
            self.metrics.record_cache_error(operation)
