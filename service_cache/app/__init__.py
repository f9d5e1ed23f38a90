"""
Response cache service package.

A caching layer placed in front of read-only JSON endpoints:
- Routes opt in via ``openapi_extra`` (see ``caching.cache_route``)
- Keys and TTLs come from pluggable policy functions
- Responses are stored in Redis with a TTL, best effort

Structure:
- app.main: FastAPI service wiring and middleware installation.
- app.caching: Decision engine, interceptor, store adapters and policies.
"""
