"""
Build a ready-to-use ResponseCache from service configuration.
"""

from pathlib import Path
from typing import Any, Mapping, Optional, TYPE_CHECKING

from pydantic import ValidationError

from shared.config import BaseConfig
from shared.errors import CacheConfigurationError
from shared.logging import get_logger
from .helpers import BUILTIN_HELPERS, HelperLoader, directory_helper_loader, mapping_helper_loader
from .options import GlobalOptions, HelperRef
from .policy import CachePolicy
from .response_cache import ResponseCache
from .store import CacheStore, create_store

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

logger = get_logger("response_cache.factory")


def _helper_ref(kind: str, module: Optional[str], function: Optional[str]) -> Optional[HelperRef]:
    if not module and not function:
        return None
    if not (module and function):
        raise CacheConfigurationError(
            f"Both {kind}_helper and {kind}_function must be set",
            details={f"{kind}_helper": module, f"{kind}_function": function},
        )
    return HelperRef(module=module, function=function)


def global_options_from_config(config: BaseConfig) -> Optional[GlobalOptions]:
    """Translate flat settings into GlobalOptions; ``None`` disables caching."""
    if not config.enabled:
        return None

    try:
        return GlobalOptions(
            name=config.name,
            timezone=config.timezone,
            key=_helper_ref("key", config.key_helper, config.key_function),
            ttl=_helper_ref("ttl", config.ttl_helper, config.ttl_function),
            backend_url=config.backend_url,
            store_timeout_seconds=config.store_timeout_seconds,
            max_pending_writes=config.max_pending_writes,
            max_body_bytes=config.max_body_bytes,
            breaker_failure_threshold=config.breaker_failure_threshold,
            breaker_recovery_seconds=config.breaker_recovery_seconds,
        )
    except ValidationError as exc:
        raise CacheConfigurationError("Invalid cache options", details={"errors": str(exc)}) from exc


def build_response_cache(
    config: BaseConfig,
    *,
    helpers: Optional[Mapping[str, Mapping[str, Any]]] = None,
    helper_loader: Optional[HelperLoader] = None,
    store: Optional[CacheStore] = None,
    metrics: Optional["MetricsCollector"] = None,
) -> ResponseCache:
    """Wire store, policy and metrics into an engine.

    Helper functions come from, in order of precedence: ``helper_loader``,
    an explicit ``helpers`` mapping, or ``<app_root>/<helpers_dir>`` with the
    built-in helpers as fallback.
    """
    global_options = global_options_from_config(config)

    if helper_loader is None:
        if helpers is not None:
            helper_loader = mapping_helper_loader({**BUILTIN_HELPERS, **helpers})
        else:
            helpers_dir = Path(config.app_root) / config.helpers_dir
            helper_loader = directory_helper_loader(helpers_dir, fallback=mapping_helper_loader(BUILTIN_HELPERS))

    if global_options is None:
        logger.info("Response cache disabled by configuration")
        return ResponseCache(store if store is not None else create_store(config.backend_url), None, metrics=metrics)

    policy = CachePolicy.resolve(global_options, helper_loader)
    cache = ResponseCache(
        store if store is not None else create_store(global_options.backend_url),
        global_options,
        policy,
        metrics=metrics,
    )
    logger.info(
        "Response cache created",
        name=global_options.name,
        key_helper=global_options.key.model_dump() if global_options.key else None,
        ttl_helper=global_options.ttl.model_dump() if global_options.ttl else None,
        store=type(cache.store).__name__,
    )
    return cache
