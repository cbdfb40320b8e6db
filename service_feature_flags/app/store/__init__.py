"""
Store package for the Feature Flag Service.

Holds flag definitions in an immutable in-memory snapshot that is swapped
on every mutation, written through to a durable repository first.

Repositories:
- memory: In-process repository for tests and local runs.
- redis_store: Redis hash of JSON records.
- postgres: PostgreSQL table of JSONB records.
"""
