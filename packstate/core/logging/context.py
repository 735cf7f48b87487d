# packstate/core/logging/context.py
from __future__ import annotations
import contextvars
from contextlib import contextmanager
from collections.abc import Iterator

# All log context lives here. Batches put their batchId/operation in it.
_logContextVar: contextvars.ContextVar[dict[str, object] | None] = contextvars.ContextVar("packstate.logctx", default=None)

def setLogContext(**kvs):
    """Set or update per-log context values (batchId, operation, packageName, etc.)."""
    current = dict(_logContextVar.get() or {}) # use copy
    for key, value in kvs.items():
        if value is not None:
            current[key] = value
    _logContextVar.set(current)

def clearLogContext():
    """Clear context after a batch is fully handled."""
    _logContextVar.set(None)

def getLogContext():
    """Return current content dict or None."""
    return _logContextVar.get()

@contextmanager
def logContext(**kvs) -> Iterator[None]:
    """Scoped setLogContext(); previous context is restored on exit."""
    token = _logContextVar.set(dict(_logContextVar.get() or {}))
    try:
        setLogContext(**kvs)
        yield
    finally:
        _logContextVar.reset(token)
