"""
Cache package for the Feature Flag Service.

Stores per-(user, flag) evaluation results with a TTL. The CacheLayer puts
a bounded timeout on every backend call and degrades to a miss on failure,
so a cache outage never fails or noticeably delays an evaluation.

Backends:
- memory: In-process TTL map with flag and user indexes.
- redis_cache: Redis keys with SETEX and pattern invalidation.
"""
