"""
Helper loaders for operator-supplied key and TTL functions.

A helper loader maps a module identifier to the functions that module
exports. Loaders fail loudly with ``CacheConfigurationError``; they are only
consulted while the cache is being built.
"""

import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, Mapping, Optional, Union

from shared.errors import CacheConfigurationError
from shared.logging import get_logger
from .ttl import until_next_day, until_next_minute

HelperModule = Mapping[str, Any]
HelperLoader = Callable[[str], HelperModule]

logger = get_logger("response_cache.helpers")

BUILTIN_HELPERS: Dict[str, Dict[str, Callable[..., Any]]] = {
    "ttl": {
        "until_next_minute": until_next_minute,
        "until_next_day": until_next_day,
    },
}


def mapping_helper_loader(helpers: Mapping[str, Mapping[str, Any]]) -> HelperLoader:
    """Serve helper modules from an in-process mapping."""

    def load(module: str) -> HelperModule:
        if module not in helpers:
            raise CacheConfigurationError(
                f"Helper module '{module}' is not registered",
                details={"module": module, "available": sorted(helpers)},
            )
        return helpers[module]

    return load


def directory_helper_loader(
    helpers_dir: Union[str, Path],
    fallback: Optional[HelperLoader] = None,
) -> HelperLoader:
    """Load ``<helpers_dir>/<module>.py`` files.

    When the file does not exist and a ``fallback`` loader is given, the
    module is looked up there instead.
    """
    base = Path(helpers_dir).resolve()

    def load(module: str) -> HelperModule:
        path = (base / f"{module}.py").resolve()
        if base not in path.parents:
            raise CacheConfigurationError(
                f"Helper module '{module}' resolves outside the helpers directory",
                details={"module": module, "helpers_dir": str(base)},
            )

        if not path.is_file():
            if fallback is not None:
                return fallback(module)
            raise CacheConfigurationError(
                f"Helper module '{module}' not found",
                details={"module": module, "path": str(path)},
            )

        return vars(_import_file(module, path))

    return load


def _import_file(module: str, path: Path) -> ModuleType:
    spec = importlib.util.spec_from_file_location(f"response_cache_helpers.{module}", path)
    if spec is None or spec.loader is None:
        raise CacheConfigurationError(
            f"Helper module '{module}' cannot be imported",
            details={"module": module, "path": str(path)},
        )

    loaded = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(loaded)
    except Exception as exc:
        raise CacheConfigurationError(
            f"Helper module '{module}' failed to import: {exc}",
            details={"module": module, "path": str(path)},
        ) from exc

    logger.info("Loaded cache helper module", module=module, path=str(path))
    return loaded
