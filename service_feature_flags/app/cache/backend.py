"""
Decision cache backend contract.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional


class DecisionCacheBackend(ABC):
    """Minimal TTL key-value contract for cached evaluation results.

    Payloads are the dicts produced by ``EvaluationResult.to_dict``.
    """

    name = "cache"

    async def start(self):
        """Open connections."""

    async def stop(self):
        """Close connections."""

    @abstractmethod
    async def get(self, user_id: str, flag: str) -> Optional[Dict[str, Any]]:
        """Return the cached payload or None."""

    @abstractmethod
    async def set(self, user_id: str, flag: str, payload: Dict[str, Any], ttl_seconds: int) -> None:
        """Store a payload for ``ttl_seconds``."""

    @abstractmethod
    async def delete_by_flag(self, flag: str) -> int:
        """Remove every entry for ``flag`` regardless of user."""

    @abstractmethod
    async def delete_by_user(self, user_id: str) -> int:
        """Remove every entry for ``user_id`` regardless of flag."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
