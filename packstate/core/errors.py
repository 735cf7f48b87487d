# packstate/core/errors.py
from __future__ import annotations

__all__ = [
    "ReactorScramError",
    "PackStateError",
    "ConfigValidationError",
    "NoRootsConfiguredError",
    "EmptySelectionError",
    "ResolutionError",
    "PlanAbortedError",
]



class ReactorScramError(Exception):
    """Raised when the engine violates a core invariant and hits the shutdown button."""
    pass



class PackStateError(RuntimeError):
    """Base class for precondition errors raised before any file is touched."""
    pass



class ConfigValidationError(PackStateError):
    def __init__(self, namespace: str, message: str):
        super().__init__(f"Config '{namespace}' failed validation: {message}")
        self.namespace = namespace
        self.message = message



class NoRootsConfiguredError(PackStateError):
    """Neither a loaded nor an available root is configured."""
    def __init__(self, detail: str = ""):
        msg = "No storage roots configured"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.detail = detail



class EmptySelectionError(PackStateError):
    def __init__(self, operation: str):
        super().__init__(f"Nothing selected for '{operation}'")
        self.operation = operation



class ResolutionError(PackStateError):
    """A duplicate resolution decision cannot be turned into a plan."""
    pass



class PlanAbortedError(ResolutionError):
    """Disambiguation was cancelled; the whole batch is a no-op."""
    def __init__(self, filename: str):
        super().__init__(f"Resolution aborted: no file selected for '{filename}'")
        self.filename = filename
