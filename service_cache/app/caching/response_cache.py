"""
Response cache decision engine.

For every request the engine decides whether the matched route is cacheable,
looks the response up in the store, and either replays the stored body (hit)
or lets the downstream app run with its ``send`` wrapped so a successful
body gets stored (miss). Any failure of the cache itself degrades to a plain
pass-through; the cache is never the reason a request fails.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Set, TYPE_CHECKING

from starlette.responses import JSONResponse
from starlette.types import Send

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import CacheBackendError, PolicyFunctionError
from shared.logging import get_logger, set_cache_key
from .interceptor import ResponseInterceptor
from .options import CacheEntry, CacheOutcome, CacheRequest, GlobalOptions, PathOptions
from .policy import CachePolicy
from .store import CacheStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

CACHEABLE_METHOD = "GET"
CACHE_STATUS_HEADER = "x-cache"

CallNext = Callable[[Send], Awaitable[None]]


class ResponseCache:
    """Caching decision engine shared by all requests of an application."""

    def __init__(
        self,
        store: CacheStore,
        global_options: Optional[GlobalOptions],
        policy: Optional[CachePolicy] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.store = store
        self.global_options = global_options
        self.policy = policy or CachePolicy()
        self.metrics = metrics
        self.logger = get_logger("response_cache.engine")

        if global_options is not None:
            self.store_timeout = global_options.store_timeout_seconds
            self.max_pending_writes = global_options.max_pending_writes
            self.max_body_bytes = global_options.max_body_bytes
            failure_threshold = global_options.breaker_failure_threshold
            recovery_timeout = global_options.breaker_recovery_seconds
        else:
            self.store_timeout = None
            self.max_pending_writes = 100
            self.max_body_bytes = None
            failure_threshold = 5
            recovery_timeout = 30.0

        self.breaker = breaker or CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name="cache_store",
        )
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def is_cacheable(self, request: CacheRequest, path_options: Optional[PathOptions]) -> bool:
        """GET on a route whose options enable caching, with caching configured."""
        return (
            request.method == CACHEABLE_METHOD
            and self.global_options is not None
            and path_options is not None
            and path_options.enabled
        )

    async def handle(
        self,
        request: CacheRequest,
        path_options: Optional[PathOptions],
        send: Send,
        call_next: CallNext,
    ) -> CacheOutcome:
        """Serve ``request`` from the cache or pass it to ``call_next``.

        ``call_next`` is awaited exactly once unless the request is a hit.
        """
        if not self.is_cacheable(request, path_options):
            self.logger.debug("Cache disabled for request", method=request.method, path=request.path)
            self._record_outcome(CacheOutcome.BYPASS)
            await call_next(send)
            return CacheOutcome.BYPASS

        try:
            cache_key = self._cache_key(request, path_options)
        except PolicyFunctionError as exc:
            self.logger.error("Cache key error, bypassing cache", path=request.path, error=str(exc))
            self._record_outcome(CacheOutcome.ERROR)
            await call_next(send)
            return CacheOutcome.ERROR

        set_cache_key(cache_key)
        try:
            try:
                cached = await self._lookup(cache_key)
            except CacheBackendError as exc:
                self.logger.error("Cache get error, bypassing cache", cache_key=cache_key, error=str(exc))
                self._record_outcome(CacheOutcome.ERROR)
                await call_next(send)
                return CacheOutcome.ERROR

            if cached is not None:
                await self.handle_cache_hit(cache_key, cached, send)
                return CacheOutcome.HIT

            await self.handle_cache_miss(cache_key, request, path_options, send, call_next)
            return CacheOutcome.MISS
        finally:
            set_cache_key(None)

    async def handle_cache_hit(self, cache_key: str, entry: CacheEntry, send: Send) -> None:
        """Write the stored body straight to the client."""
        self.logger.debug("Cache hit", cache_key=cache_key)
        self._record_outcome(CacheOutcome.HIT)

        response = JSONResponse(entry.body, headers={CACHE_STATUS_HEADER: "HIT"})
        await send({
            "type": "http.response.start",
            "status": response.status_code,
            "headers": response.raw_headers,
        })
        await send({"type": "http.response.body", "body": response.body})

    async def handle_cache_miss(
        self,
        cache_key: str,
        request: CacheRequest,
        path_options: Optional[PathOptions],
        send: Send,
        call_next: CallNext,
    ) -> None:
        """Run downstream with ``send`` wrapped to record a successful body."""
        self.logger.debug("Cache miss", cache_key=cache_key)
        self._record_outcome(CacheOutcome.MISS)

        interceptor = ResponseInterceptor(
            lambda body: self.propagate_response(cache_key, body, request, path_options),
            max_body_bytes=self.max_body_bytes,
        )
        await call_next(interceptor.arm(send))

    def propagate_response(
        self,
        cache_key: str,
        body: Any,
        request: CacheRequest,
        path_options: Optional[PathOptions],
    ) -> Optional["asyncio.Task[None]"]:
        """Schedule a background write of ``body``; never blocks or raises."""
        try:
            ttl = self._cache_ttl(request, path_options)
        except PolicyFunctionError as exc:
            self.logger.error("Cache ttl error, response not stored", cache_key=cache_key, error=str(exc))
            return None

        if len(self._pending) >= self.max_pending_writes:
            self.logger.warning(
                "Too many pending cache writes, response not stored",
                cache_key=cache_key,
                pending=len(self._pending),
            )
            self._increment("response_cache_writes_dropped_total")
            return None

        self.logger.debug("Propagate response to cache", cache_key=cache_key, ttl=ttl)
        task = asyncio.get_running_loop().create_task(self._write(cache_key, CacheEntry(body=body), ttl))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for background writes in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.store.close()

    def _cache_key(self, request: CacheRequest, path_options: Optional[PathOptions]) -> str:
        try:
            cache_key = self.policy.key_fn(request, self.global_options, path_options)
        except Exception as exc:
            raise PolicyFunctionError("key", str(exc)) from exc

        if not isinstance(cache_key, str) or not cache_key:
            raise PolicyFunctionError("key", f"expected a non-empty string, got {cache_key!r}")
        return cache_key

    def _cache_ttl(self, request: CacheRequest, path_options: Optional[PathOptions]) -> int:
        try:
            ttl = self.policy.ttl_fn(request, self.global_options, path_options)
        except Exception as exc:
            raise PolicyFunctionError("ttl", str(exc)) from exc

        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or int(ttl) <= 0:
            raise PolicyFunctionError("ttl", f"expected a positive number of seconds, got {ttl!r}")
        return int(ttl)

    async def _lookup(self, cache_key: str) -> Optional[CacheEntry]:
        start = time.perf_counter()
        result = "error"
        try:
            entry = await self.breaker.call(self._bounded, self.store.get, cache_key)
            result = "hit" if entry is not None else "miss"
            return entry
        except CacheBackendError:
            self._increment("response_cache_store_errors_total", operation="get")
            raise
        except CircuitBreakerOpenException as exc:
            raise CacheBackendError("get", str(exc), details={"breaker": self.breaker.name}) from exc
        except asyncio.TimeoutError as exc:
            self._increment("response_cache_store_errors_total", operation="get")
            raise CacheBackendError("get", f"timed out after {self.store_timeout}s") from exc
        except Exception as exc:
            self._increment("response_cache_store_errors_total", operation="get")
            raise CacheBackendError("get", str(exc)) from exc
        finally:
            self._observe("response_cache_lookup_duration_seconds", time.perf_counter() - start, result=result)

    async def _write(self, cache_key: str, entry: CacheEntry, ttl: int) -> None:
        try:
            await self.breaker.call(self._bounded, self.store.set, cache_key, entry, ttl)
        except CircuitBreakerOpenException as exc:
            self.logger.warning("Cache write skipped", cache_key=cache_key, error=str(exc))
        except Exception as exc:
            self.logger.error("Cache write error", cache_key=cache_key, error=str(exc) or type(exc).__name__)
            self._increment("response_cache_store_errors_total", operation="set")

    async def _bounded(self, operation: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if self.store_timeout is None:
            return await operation(*args)
        return await asyncio.wait_for(operation(*args), self.store_timeout)

    def _record_outcome(self, outcome: CacheOutcome) -> None:
        self._increment("response_cache_requests_total", outcome=outcome.value)

    def _increment(self, metric_name: str, **labels: str) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter(metric_name, **labels)
        except Exception as exc:  # pragma: no cover - metrics failures never affect requests
            self.logger.debug("Failed to record cache metric", metric=metric_name, error=str(exc))

    def _observe(self, metric_name: str, value: float, **labels: str) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.observe_histogram(metric_name, value, **labels)
        except Exception as exc:  # pragma: no cover - metrics failures never affect requests
            self.logger.debug("Failed to record cache metric", metric=metric_name, error=str(exc))
