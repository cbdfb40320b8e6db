"""
Durable repository contract for flag definitions.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List


class FlagRepository(ABC):
    """Opaque durable record store for flag definitions.

    Records are the JSON-compatible dicts produced by
    ``FlagDefinition.to_record``. Implementations raise
    ``BackendUnavailableError`` when the backend cannot be reached.
    """

    name = "repository"

    async def start(self):
        """Open connections."""

    async def stop(self):
        """Close connections."""

    @abstractmethod
    async def load_all(self) -> List[Dict[str, Any]]:
        """Return every stored record."""

    @abstractmethod
    async def save(self, flag: str, record: Dict[str, Any]) -> None:
        """Insert or replace the record for ``flag``."""

    @abstractmethod
    async def delete(self, flag: str) -> None:
        """Remove the record for ``flag`` if present."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
