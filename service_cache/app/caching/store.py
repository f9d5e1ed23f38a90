"""
Cache store adapters.

The engine only relies on the ``CacheStore`` protocol: a best-effort,
TTL-bounded map keyed by string. No read-after-write ordering is assumed.
"""

import time
from typing import Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

import redis.asyncio as redis
from pydantic import ValidationError

from shared.errors import CacheConfigurationError
from shared.logging import get_logger
from .options import CacheEntry


@runtime_checkable
class CacheStore(Protocol):
    """Asynchronous get/set-with-TTL capability."""

    async def get(self, key: str) -> Optional[CacheEntry]:
        ...

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


class RedisCacheStore:
    """Redis-backed store; entries are JSON documents ``{"body": ...}``."""

    def __init__(
        self,
        redis_url: str,
        *,
        client: Optional[redis.Redis] = None,
        socket_timeout: Optional[float] = 5.0,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("response_cache.store.redis")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                health_check_interval=30,
            )
        return self._redis

    async def get(self, key: str) -> Optional[CacheEntry]:
        client = await self._get_redis()
        raw = await client.get(key)
        if not raw:
            return None

        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError as exc:
            # Served as a miss so the next successful response overwrites it
            self.logger.warning("Undecodable cache entry, treating as miss", key=key, error=str(exc))
            return None

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        client = await self._get_redis()
        await client.set(key, entry.model_dump_json(), ex=ttl_seconds)
        self.logger.debug("Cached response", key=key, ttl=ttl_seconds)

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except Exception as exc:
            self.logger.warning("Redis ping failed", error=str(exc))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis cache store closed")


class InMemoryCacheStore:
    """Process-local store with per-key expiry, for development and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        item = self._entries.get(key)
        if item is None:
            return None

        expires_at, payload = item
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return CacheEntry.model_validate_json(payload)

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        now = self._clock()
        self._purge_expired(now)
        # Stored serialized so callers never share mutable bodies
        self._entries[key] = (now + ttl_seconds, entry.model_dump_json())

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def create_store(backend_url: str) -> CacheStore:
    """Pick a store implementation from the backend URL scheme."""
    scheme = backend_url.split("://", 1)[0].lower()
    if scheme in ("redis", "rediss", "unix"):
        return RedisCacheStore(backend_url)
    if scheme == "memory":
        return InMemoryCacheStore()
    raise CacheConfigurationError(
        f"Unsupported cache backend '{scheme}'",
        details={"backend_url": backend_url},
    )
