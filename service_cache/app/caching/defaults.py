"""
Built-in key and TTL functions.
"""

from typing import Any

DEFAULT_TTL_SECONDS = 5


def default_key_fn(request: Any, global_options: Any, path_options: Any = None) -> str:
    """Cache name prefix plus the raw request URL (path and query)."""
    return f"{global_options.name}:{request.original_url}"


def default_ttl_fn(request: Any = None, global_options: Any = None, path_options: Any = None) -> int:
    return DEFAULT_TTL_SECONDS
