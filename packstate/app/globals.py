# packstate/app/globals.py
from __future__ import annotations
from typing import Any, cast, TYPE_CHECKING

from packstate.app.context import PROCESS_REGISTRY
from packstate.core.dictpath import getByPath
from packstate.core.errors import ReactorScramError
from packstate.core.tracing import getTracer as _getCoreTracer

if TYPE_CHECKING:
    from packstate.app.engine import PackageEngine
    from packstate.config.service import ConfigService
    from packstate.content.status_index import StatusIndex
    from packstate.content.storage_roots import StorageRoots
    from packstate.core.tracing import Tracer



def getConfigService() -> ConfigService:
    cfg = PROCESS_REGISTRY.get("config.service")
    if cfg is None:
        raise ReactorScramError(
            "ConfigService is None.\n"
            "⚠️ CONFIG SERVICE MISSING ⚠️\n"
            "No roots, no retry policy, no throttle window.\n"
            "Please boot a ConfigService before moving any files."
        )
    return cast("ConfigService", cfg)



def getEngine() -> PackageEngine:
    engine = PROCESS_REGISTRY.get("engine")
    if engine is None:
        raise ReactorScramError(
            "PackageEngine is None.\n"
            "⚠️ ENGINE MISSING ⚠️\n"
            "Somebody asked to load a package and nobody was home to carry it."
        )
    return cast("PackageEngine", engine)



def getStorageRoots() -> StorageRoots:
    roots = PROCESS_REGISTRY.get("storage.roots")
    if roots is None:
        raise ReactorScramError(
            "StorageRoots is None.\n"
            "⚠️ STORAGE ROOTS MISSING ⚠️\n"
            "Every package is simultaneously everywhere and nowhere."
        )
    return cast("StorageRoots", roots)



def getStatusIndex() -> StatusIndex:
    index = PROCESS_REGISTRY.get("status.index")
    if index is None:
        raise ReactorScramError(
            "StatusIndex is None.\n"
            "⚠️ STATUS INDEX MISSING ⚠️\n"
            "All packages report 'Unknown' and refuse to elaborate."
        )
    return cast("StatusIndex", index)



def getTracer() -> Tracer:
    """
    Global access point for the Tracer singleton.

    Prefer using this instead of importing packstate.core.tracing directly,
    so future changes to tracer wiring stay localized.
    """
    return cast("Tracer", _getCoreTracer())



def config(path: str, default: Any = None) -> Any:
    """
    Read a dotted path from the merged global configuration.

    Returns `default` when the path is not found.

    Example:
      value = config("operations.throttleWindowMs")  # returns 1000
      value = config("non.existing.path", 300)       # returns 300
    """
    store = getConfigService().globalStore
    snap = store.snapshot()
    val = getByPath(snap, "values." + path)
    return default if val is None else val



def configBool(path: str, default: bool = False) -> bool:
    """
    Read a boolean from the merged global configuration.
    """
    val = config(path, None)
    if isinstance(val, bool):
        return val
    if val is None:
        return default
    return bool(val)
