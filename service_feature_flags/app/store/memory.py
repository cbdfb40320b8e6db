"""
In-memory flag repository.
"""

import copy
from typing import Dict, Any, List

from .repository import FlagRepository


class InMemoryFlagRepository(FlagRepository):
    """Repository keeping records in a dict.

    Records are deep-copied in and out so callers cannot mutate stored state.
    """

    name = "memory"

    def __init__(self, records: Dict[str, Dict[str, Any]] = None):
        self._records: Dict[str, Dict[str, Any]] = copy.deepcopy(records or {})

    async def load_all(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(record) for record in self._records.values()]

    async def save(self, flag: str, record: Dict[str, Any]) -> None:
        self._records[flag] = copy.deepcopy(record)

    async def delete(self, flag: str) -> None:
        self._records.pop(flag, None)

    async def ping(self) -> bool:
        return True

    def __contains__(self, flag: str) -> bool:
        return flag in self._records
