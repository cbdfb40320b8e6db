"""
Evaluation statistics for the Feature Flag Service.
"""

import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Any

from .flags.models import utcnow


@dataclass(frozen=True)
class EvaluationStats:
    """Point-in-time copy of the evaluation counters."""
    total_evaluations: int
    cache_hits: int
    cache_misses: int
    average_evaluation_time_ms: float
    last_stats_reset_at: datetime

    @property
    def cache_hit_rate(self) -> float:
        if self.total_evaluations == 0:
            return 0.0
        return self.cache_hits / self.total_evaluations

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_stats_reset_at"] = self.last_stats_reset_at.isoformat()
        data["cache_hit_rate"] = self.cache_hit_rate
        return data


class StatsCollector:
    """Counters and running-average latency for top-level evaluations."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reset()

    def record(self, cache_hit: bool, evaluation_time_ms: float):
        """Record one evaluation."""
        with self._lock:
            self._total += 1
            if cache_hit:
                self._hits += 1
            else:
                self._misses += 1
            self._average += (evaluation_time_ms - self._average) / self._total

    def snapshot(self) -> EvaluationStats:
        with self._lock:
            return EvaluationStats(
                total_evaluations=self._total,
                cache_hits=self._hits,
                cache_misses=self._misses,
                average_evaluation_time_ms=self._average,
                last_stats_reset_at=self._reset_at,
            )

    def reset(self):
        with self._lock:
            self._reset()

    def _reset(self):
        self._total = 0
        self._hits = 0
        self._misses = 0
        self._average = 0.0
        self._reset_at = utcnow()
