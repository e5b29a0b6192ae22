"""
Shared utilities for the Carrier Access Layer.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation and key masking
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- concurrency: Bounded fan-out for concurrent upstream calls
- base_service: FastAPI skeleton with health, metrics and error handlers

Any cross-cutting logic should live here. Do not import from service_*
packages into shared/.
"""
