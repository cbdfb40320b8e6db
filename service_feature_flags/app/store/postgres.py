"""
PostgreSQL flag repository for the Feature Flag Service.
"""

import json
from typing import Dict, Any, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import BackendUnavailableError
from .repository import FlagRepository

_BACKEND_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


class PostgresFlagRepository(FlagRepository):
    """Flag definitions stored as JSONB rows."""

    name = "postgres"

    def __init__(self, dsn: str, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.logger = get_logger("feature_flags.store.postgres")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Start the repository."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=2,
                    max_size=10,
                    command_timeout=30
                )

            await self._create_tables()

            self.logger.info("PostgreSQL flag repository started")

        except _BACKEND_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL flag repository", error=str(e))
            raise BackendUnavailableError("postgres", str(e)) from e

    async def stop(self):
        """Stop the repository."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL flag repository stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS feature_flags (
                    flag VARCHAR(255) PRIMARY KEY,
                    definition JSONB NOT NULL,
                    enabled BOOLEAN NOT NULL DEFAULT TRUE,
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_feature_flags_enabled ON feature_flags(enabled);
            """)

    async def _ensure_started(self):
        """Create the pool when an earlier start did not."""
        if self.pool is None:
            await self.start()

    async def load_all(self) -> List[Dict[str, Any]]:
        try:
            await self._ensure_started()
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("SELECT flag, definition FROM feature_flags")
        except _BACKEND_ERRORS as e:
            raise BackendUnavailableError("postgres", str(e)) from e

        records = []
        for row in rows:
            definition = row["definition"]
            try:
                records.append(json.loads(definition) if isinstance(definition, str) else dict(definition))
            except (TypeError, ValueError) as e:
                self.logger.warning("Skipping unreadable flag record", flag=row["flag"], error=str(e))
        return records

    async def save(self, flag: str, record: Dict[str, Any]) -> None:
        try:
            await self._ensure_started()
            async with self.pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO feature_flags (flag, definition, enabled, updated_at)
                    VALUES ($1, $2::jsonb, $3, NOW())
                    ON CONFLICT (flag) DO UPDATE SET
                        definition = EXCLUDED.definition,
                        enabled = EXCLUDED.enabled,
                        updated_at = EXCLUDED.updated_at
                """, flag, json.dumps(record), bool(record.get("enabled", True)))
        except _BACKEND_ERRORS as e:
            self.logger.error("Error saving flag", flag=flag, error=str(e))
            raise BackendUnavailableError("postgres", str(e)) from e

    async def delete(self, flag: str) -> None:
        try:
            await self._ensure_started()
            async with self.pool.acquire() as conn:
                await conn.execute("DELETE FROM feature_flags WHERE flag = $1", flag)
        except _BACKEND_ERRORS as e:
            self.logger.error("Error deleting flag", flag=flag, error=str(e))
            raise BackendUnavailableError("postgres", str(e)) from e

    async def ping(self) -> bool:
        try:
            await self._ensure_started()
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False
