"""
Redis decision cache for the Feature Flag Service.
"""

import json
import re
from typing import Dict, Any, Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import BackendUnavailableError
from .backend import DecisionCacheBackend


_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _escape_glob(value: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class RedisDecisionCache(DecisionCacheBackend):
    """Cached evaluation results stored under ``user_flags:<user>:<flag>``."""

    name = "redis"

    USER_CACHE_PREFIX = "user_flags:"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None, scan_count: int = 500):
        self.redis_url = redis_url
        self.scan_count = scan_count
        self.logger = get_logger("feature_flags.cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis cache."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1,
                health_check_interval=30
            )
        self.logger.info("Redis decision cache started")

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis decision cache stopped")

    async def get(self, user_id: str, flag: str) -> Optional[Dict[str, Any]]:
        try:
            cached_data = await self.redis.get(self._key(user_id, flag))
        except redis.RedisError as e:
            raise BackendUnavailableError("redis", str(e)) from e

        if not cached_data:
            return None
        return json.loads(cached_data)

    async def set(self, user_id: str, flag: str, payload: Dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            await self.redis.setex(self._key(user_id, flag), ttl_seconds, json.dumps(payload))
        except redis.RedisError as e:
            raise BackendUnavailableError("redis", str(e)) from e

    async def delete_by_flag(self, flag: str) -> int:
        return await self._delete_matching(f"{self.USER_CACHE_PREFIX}*:{_escape_glob(flag)}")

    async def delete_by_user(self, user_id: str) -> int:
        return await self._delete_matching(f"{self.USER_CACHE_PREFIX}{_escape_glob(user_id)}:*")

    async def clear(self) -> None:
        await self._delete_matching(f"{self.USER_CACHE_PREFIX}*")

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception:
            return False

    def _key(self, user_id: str, flag: str) -> str:
        return f"{self.USER_CACHE_PREFIX}{user_id}:{flag}"

    async def _delete_matching(self, pattern: str) -> int:
        try:
            keys = [key async for key in self.redis.scan_iter(match=pattern, count=self.scan_count)]
            if keys:
                await self.redis.delete(*keys)
        except redis.RedisError as e:
            raise BackendUnavailableError("redis", str(e)) from e

        self.logger.debug("Deleted cached decisions", pattern=pattern, count=len(keys))
        return len(keys)
