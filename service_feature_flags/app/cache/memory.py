"""
In-process decision cache.
"""

import copy
import time
from collections import OrderedDict
from typing import Dict, Any, Callable, Optional, Set, Tuple

from .backend import DecisionCacheBackend

# Expired entries dropped from the oldest end per eviction
EXPIRED_SWEEP_LIMIT = 16


class InMemoryDecisionCache(DecisionCacheBackend):
    """TTL map keyed by (user_id, flag) with secondary indexes.

    Entries are kept in insertion order, so eviction takes the oldest entry
    in constant time. Expired entries are dropped when read and, a bounded
    number at a time, from the oldest end when the cache is full. The indexes
    make flag and user invalidation proportional to the number of affected
    entries rather than the cache size.
    """

    name = "memory"

    def __init__(self, max_entries: int = 100_000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Tuple[str, str], Tuple[float, Dict[str, Any]]]" = OrderedDict()
        self._by_flag: Dict[str, Set[str]] = {}
        self._by_user: Dict[str, Set[str]] = {}

    async def get(self, user_id: str, flag: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get((user_id, flag))
        if entry is None:
            return None

        expires_at, payload = entry
        if expires_at <= self._clock():
            self._remove(user_id, flag)
            return None
        return copy.deepcopy(payload)

    async def set(self, user_id: str, flag: str, payload: Dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return

        key = (user_id, flag)
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self.max_entries:
            self._evict()

        self._entries[key] = (self._clock() + ttl_seconds, copy.deepcopy(payload))
        self._by_flag.setdefault(flag, set()).add(user_id)
        self._by_user.setdefault(user_id, set()).add(flag)

    async def delete_by_flag(self, flag: str) -> int:
        users = list(self._by_flag.get(flag, ()))
        for user_id in users:
            self._remove(user_id, flag)
        return len(users)

    async def delete_by_user(self, user_id: str) -> int:
        flags = list(self._by_user.get(user_id, ()))
        for flag in flags:
            self._remove(user_id, flag)
        return len(flags)

    async def clear(self) -> None:
        self._entries.clear()
        self._by_flag.clear()
        self._by_user.clear()

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._entries)

    def _remove(self, user_id: str, flag: str):
        self._entries.pop((user_id, flag), None)
        users = self._by_flag.get(flag)
        if users is not None:
            users.discard(user_id)
            if not users:
                del self._by_flag[flag]
        flags = self._by_user.get(user_id)
        if flags is not None:
            flags.discard(flag)
            if not flags:
                del self._by_user[user_id]

    def _evict(self):
        """Drop a few expired entries from the oldest end, then the oldest if still full."""
        now = self._clock()
        for _ in range(EXPIRED_SWEEP_LIMIT):
            if not self._entries:
                return
            (user_id, flag), (expires_at, _payload) = next(iter(self._entries.items()))
            if expires_at > now:
                break
            self._remove(user_id, flag)

        if len(self._entries) >= self.max_entries:
            (user_id, flag), _ = self._entries.popitem(last=False)
            self._remove(user_id, flag)
