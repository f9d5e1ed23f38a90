"""
Key/TTL policy resolution.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from shared.errors import CacheConfigurationError
from shared.logging import get_logger
from .defaults import default_key_fn, default_ttl_fn
from .helpers import HelperLoader
from .options import CacheRequest, GlobalOptions, HelperRef, PathOptions

KeyFn = Callable[[CacheRequest, GlobalOptions, Optional[PathOptions]], str]
TtlFn = Callable[[CacheRequest, GlobalOptions, Optional[PathOptions]], int]

logger = get_logger("response_cache.policy")


def resolve_policy_fn(
    option: Optional[HelperRef],
    default: Callable[..., Any],
    helper_loader: Optional[HelperLoader] = None,
) -> Callable[..., Any]:
    """Return the helper function named by ``option``, or ``default``.

    Raises ``CacheConfigurationError`` if the helper cannot be resolved;
    there is no silent fallback to the default.
    """
    if option is None:
        return default

    if helper_loader is None:
        raise CacheConfigurationError(
            f"Helper '{option.module}.{option.function}' configured but no helper loader available",
            details={"module": option.module, "function": option.function},
        )

    logger.debug("Resolving cache helper", module=option.module, function=option.function)
    module = helper_loader(option.module)
    fn = module.get(option.function)
    if fn is None:
        raise CacheConfigurationError(
            f"Helper module '{option.module}' has no function '{option.function}'",
            details={"module": option.module, "function": option.function},
        )
    if not callable(fn):
        raise CacheConfigurationError(
            f"Helper '{option.module}.{option.function}' is not callable",
            details={"module": option.module, "function": option.function},
        )
    return fn


@dataclass(frozen=True)
class CachePolicy:
    """Key and TTL functions, resolved once per cache."""
    key_fn: KeyFn = default_key_fn
    ttl_fn: TtlFn = default_ttl_fn

    @classmethod
    def resolve(cls, global_options: GlobalOptions, helper_loader: Optional[HelperLoader] = None) -> "CachePolicy":
        return cls(
            key_fn=resolve_policy_fn(global_options.key, default_key_fn, helper_loader),
            ttl_fn=resolve_policy_fn(global_options.ttl, default_ttl_fn, helper_loader),
        )
