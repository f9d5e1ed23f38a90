"""
ASGI middleware exposing the response cache to a FastAPI/Starlette app.

Routes opt in through their ``openapi_extra`` block::

    @app.get("/instruments", openapi_extra=cache_route())
"""

from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError
from starlette.routing import Match
from starlette.types import ASGIApp, Receive, Scope, Send

from shared.logging import get_logger
from .options import CONFIG_KEY, CacheRequest, PathOptions
from .response_cache import ResponseCache


class ResponseCacheMiddleware:
    """Pure ASGI middleware; the wrapped app plays the role of ``next``."""

    def __init__(self, app: ASGIApp, response_cache: ResponseCache):
        self.app = app
        self.response_cache = response_cache
        self.logger = get_logger("response_cache.middleware")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path_options, path_params = self._resolve_path_options(scope)
        request = CacheRequest.from_scope(scope, path_params)

        async def call_next(downstream_send: Send) -> None:
            await self.app(scope, receive, downstream_send)

        await self.response_cache.handle(request, path_options, send, call_next)

    def _resolve_path_options(self, scope: Scope) -> Tuple[Optional[PathOptions], Dict[str, Any]]:
        """Find the route that will serve ``scope`` and read its cache options."""
        if scope.get("method") != "GET":
            return None, {}

        app = scope.get("app")
        router = getattr(app, "router", None)
        for route in getattr(router, "routes", []):
            match, child_scope = route.matches(scope)
            if match != Match.FULL:
                continue

            extra = getattr(route, "openapi_extra", None) or {}
            raw_options = extra.get(CONFIG_KEY)
            if raw_options is None:
                return None, {}

            try:
                return PathOptions.model_validate(raw_options), child_scope.get("path_params", {})
            except ValidationError as exc:
                self.logger.error(
                    "Invalid cache options on route, caching disabled",
                    path=getattr(route, "path", scope.get("path")),
                    error=str(exc),
                )
                return None, {}

        return None, {}
