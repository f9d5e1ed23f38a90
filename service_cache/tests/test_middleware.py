"""
Unit tests for the response cache ASGI middleware.
"""

import pytest
import httpx
from collections import Counter

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache.app.caching import (
    CachePolicy,
    GlobalOptions,
    InMemoryCacheStore,
    ResponseCache,
    ResponseCacheMiddleware,
    cache_route,
)


class UnreachableStore(InMemoryCacheStore):
    """Store whose backend refuses every call."""

    async def get(self, key):
        raise ConnectionError("connection refused")

    async def set(self, key, entry, ttl_seconds):
        raise ConnectionError("connection refused")


def build_app(cache: ResponseCache, calls: Counter) -> FastAPI:
    app = FastAPI()

    @app.get("/api/v1/instruments", openapi_extra=cache_route())
    async def list_instruments(limit: int = 10):
        calls["instruments"] += 1
        return {"instruments": ["BRN", "WTI"][:limit], "call": calls["instruments"]}

    @app.post("/api/v1/instruments", openapi_extra=cache_route())
    async def create_instrument():
        calls["create"] += 1
        return {"created": calls["create"]}

    @app.get("/api/v1/instruments/{symbol}", openapi_extra=cache_route(region="eu"))
    async def get_instrument(symbol: str):
        calls[symbol] += 1
        if symbol == "UNKNOWN":
            raise HTTPException(status_code=404, detail="Instrument not found")
        return {"symbol": symbol, "call": calls[symbol]}

    @app.get("/api/v1/curves")
    async def list_curves():
        calls["curves"] += 1
        return {"call": calls["curves"]}

    @app.get("/api/v1/disabled", openapi_extra=cache_route(enabled=False))
    async def disabled():
        calls["disabled"] += 1
        return {"call": calls["disabled"]}

    @app.get("/api/v1/invalid", openapi_extra={"x-response-cache": {"enabled": "sometimes"}})
    async def invalid_options():
        calls["invalid"] += 1
        return {"call": calls["invalid"]}

    @app.get("/api/v1/text", openapi_extra=cache_route(), response_class=PlainTextResponse)
    async def text():
        calls["text"] += 1
        return f"call {calls['text']}"

    app.add_middleware(ResponseCacheMiddleware, response_cache=cache)
    return app


class TestResponseCacheMiddleware:
    """Test cases for ResponseCacheMiddleware."""

    @pytest.fixture
    def store(self):
        return InMemoryCacheStore()

    @pytest.fixture
    def cache(self, store):
        return ResponseCache(store, GlobalOptions(name="api", backend_url="memory://"))

    @pytest.fixture
    def calls(self):
        return Counter()

    @pytest.fixture
    def app(self, cache, calls):
        return build_app(cache, calls)

    @pytest.fixture
    def client(self, app):
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")

    @pytest.mark.asyncio
    async def test_second_request_served_from_cache(self, client, cache, calls):
        first = await client.get("/api/v1/instruments")
        await cache.drain()
        second = await client.get("/api/v1/instruments")

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json() == first.json() == {"instruments": ["BRN", "WTI"], "call": 1}
        assert "x-cache" not in first.headers
        assert second.headers["x-cache"] == "HIT"
        assert calls["instruments"] == 1

    @pytest.mark.asyncio
    async def test_key_includes_query_string(self, client, cache, store, calls):
        await client.get("/api/v1/instruments?limit=1")
        await cache.drain()
        response = await client.get("/api/v1/instruments?limit=2")
        await cache.drain()

        assert response.json()["instruments"] == ["BRN", "WTI"]
        assert calls["instruments"] == 2
        assert await store.get("api:/api/v1/instruments?limit=1") is not None
        assert await store.get("api:/api/v1/instruments?limit=2") is not None

    @pytest.mark.asyncio
    async def test_post_on_cached_path_bypasses(self, client, cache, store, calls):
        await client.post("/api/v1/instruments")
        await cache.drain()
        response = await client.post("/api/v1/instruments")

        assert response.json() == {"created": 2}
        assert len(store) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path,counter", [
        ("/api/v1/curves", "curves"),
        ("/api/v1/disabled", "disabled"),
        ("/api/v1/invalid", "invalid"),
    ])
    async def test_routes_without_caching_always_reach_handler(self, client, cache, store, calls, path, counter):
        await client.get(path)
        await cache.drain()
        response = await client.get(path)

        assert response.status_code == 200
        assert response.json() == {"call": 2}
        assert calls[counter] == 2
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_error_responses_not_cached(self, client, cache, store, calls):
        first = await client.get("/api/v1/instruments/UNKNOWN")
        await cache.drain()
        second = await client.get("/api/v1/instruments/UNKNOWN")

        assert first.status_code == second.status_code == 404
        assert calls["UNKNOWN"] == 2
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_non_json_responses_not_cached(self, client, cache, store, calls):
        await client.get("/api/v1/text")
        await cache.drain()
        response = await client.get("/api/v1/text")

        assert response.text == "call 2"
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unknown_path_passes_through(self, client, cache, store):
        response = await client.get("/api/v1/nowhere")
        await cache.drain()

        assert response.status_code == 404
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_policy_sees_path_params_and_route_options(self, store, calls):
        def key_fn(request, global_options, path_options):
            symbol = request.path_params.get("symbol", "all")
            return f"{global_options.name}:{getattr(path_options, 'region', 'global')}:{symbol}"

        cache = ResponseCache(store, GlobalOptions(name="api"), CachePolicy(key_fn=key_fn))
        app = build_app(cache, calls)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
            await client.get("/api/v1/instruments/BRN")
            await cache.drain()
            response = await client.get("/api/v1/instruments/BRN")

        assert response.json() == {"symbol": "BRN", "call": 1}
        assert (await store.get("api:eu:BRN")).body == {"symbol": "BRN", "call": 1}

    @pytest.mark.asyncio
    async def test_unreachable_store_never_fails_requests(self, calls):
        cache = ResponseCache(UnreachableStore(), GlobalOptions(name="api"))
        app = build_app(cache, calls)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
            first = await client.get("/api/v1/instruments")
            await cache.drain()
            second = await client.get("/api/v1/instruments")

        assert first.status_code == second.status_code == 200
        assert second.json()["call"] == 2

    @pytest.mark.asyncio
    async def test_disabled_cache_passes_everything_through(self, store, calls):
        cache = ResponseCache(store, None)
        app = build_app(cache, calls)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
            await client.get("/api/v1/instruments")
            await cache.drain()
            response = await client.get("/api/v1/instruments")

        assert response.json()["call"] == 2
        assert len(store) == 0
