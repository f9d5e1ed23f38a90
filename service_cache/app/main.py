"""
Response cache service for FastAPI applications.

Hosts mount their routers on the service app; routes that carry a
``cache_route()`` block in ``openapi_extra`` are served through the cache.
"""

from typing import Any, Dict, Mapping, Optional

from fastapi import APIRouter

from shared.base_service import BaseService
from service_cache.app.caching import (
    CacheStore,
    ResponseCacheMiddleware,
    build_response_cache,
)


class CacheService(BaseService):
    """Service wiring the response cache into a FastAPI app."""

    def __init__(
        self,
        *,
        helpers: Optional[Mapping[str, Mapping[str, Any]]] = None,
        store: Optional[CacheStore] = None,
        **config_overrides: Any,
    ):
        self._helpers = helpers
        self._store = store
        super().__init__("response_cache", 8000, **config_overrides)
        self._setup_cache_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.cache_service = self

    def _setup_middleware(self):
        """Install the cache inside the request timing middleware."""
        self.response_cache = build_response_cache(
            self.config,
            helpers=self._helpers,
            store=self._store,
            metrics=self.metrics,
        )
        self.app.add_middleware(ResponseCacheMiddleware, response_cache=self.response_cache)
        super()._setup_middleware()

    def _setup_cache_routes(self):
        @self.app.get("/api/v1/cache/status")
        async def cache_status():
            """Cache configuration and backend protection state."""
            options = self.response_cache.global_options
            return {
                "enabled": options is not None,
                "name": options.name if options else None,
                "store": type(self.response_cache.store).__name__,
                "pending_writes": self.response_cache.pending_writes,
                "circuit_breaker": self.response_cache.breaker.get_state(),
            }

    async def _check_dependencies(self) -> Dict[str, str]:
        if self.response_cache.global_options is None:
            return {"cache_store": "disabled"}
        healthy = await self.response_cache.store.ping()
        return {"cache_store": "ok" if healthy else "error"}

    async def shutdown(self) -> None:
        await self.response_cache.close()
        self.logger.info("Response cache stopped")


def create_app(*routers: APIRouter, **kwargs: Any):
    """Create the service app and mount the host's routers on it."""
    service = CacheService(**kwargs)
    for router in routers:
        service.app.include_router(router)
    return service.app


if __name__ == "__main__":
    CacheService().run()
