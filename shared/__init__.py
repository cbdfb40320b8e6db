"""
Shared utilities for the feature flag service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI app with health, metrics and error handlers
- test_helpers: Test factories and fake backends

Any cross-service logic should live here to avoid import cycles across
service packages. Runtime modules here do not import from service_*
packages; test_helpers is the exception.
"""
