"""
Unit tests for cache construction and store protection.
"""

import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache.app.caching.factory import build_response_cache, global_options_from_config
from service_cache.app.caching.store import InMemoryCacheStore, RedisCacheStore
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, CircuitBreakerState
from shared.config import get_config
from shared.errors import CacheConfigurationError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestGlobalOptionsFromConfig:
    """Test cases for global_options_from_config."""

    def test_maps_settings(self):
        config = get_config("response_cache", 8000, name="prices", timezone="Europe/London",
                            key_helper="keys", key_function="by_region", store_timeout_seconds=0.25)

        options = global_options_from_config(config)

        assert options.name == "prices"
        assert options.timezone == "Europe/London"
        assert options.key.module == "keys"
        assert options.key.function == "by_region"
        assert options.ttl is None
        assert options.store_timeout_seconds == 0.25

    def test_disabled_returns_none(self):
        assert global_options_from_config(get_config("response_cache", 8000, enabled=False)) is None

    def test_invalid_settings_rejected(self):
        with pytest.raises(CacheConfigurationError) as exc_info:
            global_options_from_config(get_config("response_cache", 8000, max_pending_writes=0))

        assert "errors" in exc_info.value.details

    def test_helper_without_function_rejected(self):
        with pytest.raises(CacheConfigurationError, match="ttl_helper and ttl_function"):
            global_options_from_config(get_config("response_cache", 8000, ttl_function="until_next_day"))


class TestBuildResponseCache:
    """Test cases for build_response_cache."""

    @pytest.mark.parametrize("enabled", [True, False])
    def test_injected_empty_store_is_kept(self, enabled):
        store = InMemoryCacheStore()

        cache = build_response_cache(get_config("response_cache", 8000, name="n", enabled=enabled), store=store)

        assert cache.store is store

    def test_store_chosen_from_backend_url(self):
        cache = build_response_cache(get_config("response_cache", 8000, backend_url="redis://cache:6379/2"))

        assert isinstance(cache.store, RedisCacheStore)

    def test_helpers_directory_loaded(self, tmp_path):
        helpers = tmp_path / "api" / "helpers"
        helpers.mkdir(parents=True)
        (helpers / "keys.py").write_text(
            "def by_path(request, global_options, path_options):\n"
            "    return global_options.name + '|' + request.path\n"
        )
        config = get_config("response_cache", 8000, app_root=str(tmp_path),
                            key_helper="keys", key_function="by_path")

        cache = build_response_cache(config, store=InMemoryCacheStore())

        assert cache.policy.key_fn.__name__ == "by_path"

    def test_explicit_loader_takes_precedence(self):
        loader = lambda module: {"ttl_fn": lambda *args: 9}
        config = get_config("response_cache", 8000, ttl_helper="anything", ttl_function="ttl_fn")

        cache = build_response_cache(config, helper_loader=loader, store=InMemoryCacheStore())

        assert cache.policy.ttl_fn(None, None, None) == 9

    def test_protection_settings_applied(self):
        config = get_config("response_cache", 8000, store_timeout_seconds=None, max_pending_writes=3,
                            breaker_failure_threshold=7)

        cache = build_response_cache(config, store=InMemoryCacheStore())

        assert cache.store_timeout is None
        assert cache.max_pending_writes == 3
        assert cache.breaker.failure_threshold == 7


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(failure_threshold=2, recovery_timeout=10, name="test", clock=clock)

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        failing = AsyncMock(side_effect=ConnectionError("down"))

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        assert breaker.state == CircuitBreakerState.OPEN
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(failing)
        assert failing.call_count == 2

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, breaker):
        failing = AsyncMock(side_effect=ConnectionError("down"))
        await breaker.call(AsyncMock(return_value="ok"))
        with pytest.raises(ConnectionError):
            await breaker.call(failing)

        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.get_state()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_half_open_after_recovery_timeout(self, breaker, clock):
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        clock.now += 10
        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        clock.now += 10
        with pytest.raises(ConnectionError):
            await breaker.call(failing)

        assert breaker.is_open()
