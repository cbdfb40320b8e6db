"""
Feature Flag Service package.

This package decides whether a platform capability is enabled for a given
user. It provides:

- app.flags: Flag models, the known-flag registry, validation and the
  strategy evaluator.
- app.store: Copy-on-write registry of flag definitions over a durable
  repository (in-memory, Redis or PostgreSQL).
- app.cache: Per-(user, flag) decision cache with bounded backend timeouts.
- app.stats: Evaluation counters and running latency average.
- app.events: Observer list for administrative flag events.
- app.service: The FeatureFlagService composing the above.
- app.gate: FastAPI dependencies for feature-gated routes.
- app.main: Wiring from settings plus the health/metrics surface.

Guidelines:
- Evaluation never raises to callers; every failure denies access.
- Optimize for low-latency evaluations; cache where possible.
- Keep evaluation deterministic and observable (metrics + logs).
"""
