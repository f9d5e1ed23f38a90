"""
Option and entry models for the response cache.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from starlette.datastructures import Headers, QueryParams
from starlette.types import Scope


# Route-level extension key carrying PathOptions
CONFIG_KEY = "x-response-cache"


class HelperRef(BaseModel):
    """Names a custom key or TTL function inside a helper module."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    module: str = Field(validation_alias=AliasChoices("module", "helper"))
    function: str


class GlobalOptions(BaseModel):
    """Operator-wide cache options."""

    model_config = ConfigDict(frozen=True)

    name: str
    timezone: Optional[str] = None
    key: Optional[HelperRef] = None
    ttl: Optional[HelperRef] = None

    backend_url: str = "redis://localhost:6379/0"
    store_timeout_seconds: Optional[float] = 1.0
    max_pending_writes: int = Field(default=100, ge=1)
    max_body_bytes: Optional[int] = Field(default=None, ge=1)
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_recovery_seconds: float = Field(default=30.0, ge=0)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @field_validator("store_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("store_timeout_seconds must be positive or unset")
        return value


class PathOptions(BaseModel):
    """Per-route options; extra keys are kept for custom policy functions."""

    model_config = ConfigDict(frozen=True, extra="allow")

    enabled: bool = False


class CacheEntry(BaseModel):
    """Persisted unit: the JSON body of a successful response."""

    body: Any


class CacheOutcome(str, Enum):
    """Decision taken for one request."""
    HIT = "hit"
    MISS = "miss"
    BYPASS = "bypass"
    ERROR = "error"


@dataclass(frozen=True)
class CacheRequest:
    """Read-only view of the inbound request handed to policy functions."""
    method: str
    original_url: str
    path: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)
    path_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_scope(cls, scope: Scope, path_params: Optional[Dict[str, Any]] = None) -> "CacheRequest":
        query_string = scope.get("query_string", b"").decode("latin-1")
        raw_path = scope.get("raw_path")
        if raw_path:
            # Some servers include the query string in raw_path
            path = raw_path.decode("latin-1").split("?", 1)[0]
        else:
            path = scope["path"]

        original_url = f"{path}?{query_string}" if query_string else path
        return cls(
            method=scope["method"],
            original_url=original_url,
            path=scope["path"],
            headers=Headers(scope=scope),
            query_params=QueryParams(query_string),
            path_params=dict(path_params or {}),
        )


def cache_route(enabled: bool = True, **params: Any) -> Dict[str, Any]:
    """Build the ``openapi_extra`` block that turns caching on for a route.

    Example::

        @app.get("/prices", openapi_extra=cache_route(region="eu"))
    """
    return {CONFIG_KEY: {"enabled": enabled, **params}}
