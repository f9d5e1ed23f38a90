"""
Response caching package.

Serves stored JSON bodies for opted-in GET routes and records successful
responses after a miss. Cache failures always degrade to a pass-through.
"""

from .defaults import DEFAULT_TTL_SECONDS, default_key_fn, default_ttl_fn
from .factory import build_response_cache, global_options_from_config
from .helpers import BUILTIN_HELPERS, directory_helper_loader, mapping_helper_loader
from .interceptor import ResponseInterceptor
from .middleware import ResponseCacheMiddleware
from .options import (
    CONFIG_KEY,
    CacheEntry,
    CacheOutcome,
    CacheRequest,
    GlobalOptions,
    HelperRef,
    PathOptions,
    cache_route,
)
from .policy import CachePolicy, resolve_policy_fn
from .response_cache import ResponseCache
from .store import CacheStore, InMemoryCacheStore, RedisCacheStore, create_store
from .ttl import seconds_until_next_day, seconds_until_next_minute, until_next_day, until_next_minute

__all__ = [
    "BUILTIN_HELPERS",
    "CONFIG_KEY",
    "DEFAULT_TTL_SECONDS",
    "CacheEntry",
    "CacheOutcome",
    "CachePolicy",
    "CacheRequest",
    "CacheStore",
    "GlobalOptions",
    "HelperRef",
    "InMemoryCacheStore",
    "PathOptions",
    "RedisCacheStore",
    "ResponseCache",
    "ResponseCacheMiddleware",
    "ResponseInterceptor",
    "build_response_cache",
    "cache_route",
    "create_store",
    "default_key_fn",
    "default_ttl_fn",
    "directory_helper_loader",
    "global_options_from_config",
    "mapping_helper_loader",
    "resolve_policy_fn",
    "seconds_until_next_day",
    "seconds_until_next_minute",
    "until_next_day",
    "until_next_minute",
]
