"""
Redis flag repository for the Feature Flag Service.
"""

import json
from typing import Dict, Any, List, Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import BackendUnavailableError
from .repository import FlagRepository


class RedisFlagRepository(FlagRepository):
    """Flag definitions stored as JSON in a single Redis hash."""

    name = "redis"

    CONFIG_KEY = "feature_flag:config"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.logger = get_logger("feature_flags.store.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis repository."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
        self.logger.info("Redis flag repository started")

    async def stop(self):
        """Stop the Redis repository."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis flag repository stopped")

    async def load_all(self) -> List[Dict[str, Any]]:
        try:
            stored = await self.redis.hgetall(self.CONFIG_KEY)
        except redis.RedisError as e:
            raise BackendUnavailableError("redis", str(e)) from e

        records = []
        for flag, raw in stored.items():
            try:
                records.append(json.loads(raw))
            except (TypeError, ValueError) as e:
                self.logger.warning("Skipping unreadable flag record", flag=flag, error=str(e))
        return records

    async def save(self, flag: str, record: Dict[str, Any]) -> None:
        try:
            await self.redis.hset(self.CONFIG_KEY, flag, json.dumps(record))
        except redis.RedisError as e:
            raise BackendUnavailableError("redis", str(e)) from e

    async def delete(self, flag: str) -> None:
        try:
            await self.redis.hdel(self.CONFIG_KEY, flag)
        except redis.RedisError as e:
            raise BackendUnavailableError("redis", str(e)) from e

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception:
            return False
