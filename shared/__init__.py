"""
Shared utilities for the response cache layer.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Protection for cache backend calls
- base_service: FastAPI service skeleton

Do not import from service_* packages into shared/.
"""
