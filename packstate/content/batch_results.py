# packstate/content/batch_results.py
from __future__ import annotations
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

__all__ = [
    "OperationErrorKind",
    "OperationResult",
    "BatchSummary",
    "summarizeResults",
    "SAFETY_SKIP_REASON",
    "THROTTLED_REASON",
    "DEFAULT_MAX_LISTED_ERRORS",
]

SAFETY_SKIP_REASON = "Not a .var file - skipped for safety"
THROTTLED_REASON = "Operation was recently performed, please wait before retrying"
DEFAULT_MAX_LISTED_ERRORS = 10



class OperationErrorKind(Enum):
    SAFETY_SKIP = "safetySkip"
    NOT_FOUND = "notFound"
    LOCKED = "locked"
    DESTINATION = "destination"
    THROTTLED = "throttled"
    UNEXPECTED = "unexpected"



@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of one item in a batch. Failures are values, never raised."""
    identifier: str
    success: bool
    errorReason: str = ""
    errorKind: OperationErrorKind | None = None
    path: Path | None = None

    @property
    def throttled(self) -> bool:
        return self.errorKind is OperationErrorKind.THROTTLED

    @classmethod
    def ok(cls, identifier: str, path: Path | None = None) -> "OperationResult":
        return cls(identifier=identifier, success=True, path=path)

    @classmethod
    def failed(cls, identifier: str, reason: str, kind: OperationErrorKind, path: Path | None = None) -> "OperationResult":
        return cls(identifier=identifier, success=False, errorReason=reason, errorKind=kind, path=path)



@dataclass
class BatchSummary:
    """
    Counts plus a bounded list of reasons, the only shape in which batch
    failures are shown to users.
    """
    verb: str
    succeeded: int = 0
    failed: int = 0
    throttled: int = 0
    errors: list[str] = field(default_factory=list)
    maxListed: int = DEFAULT_MAX_LISTED_ERRORS

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def text(self) -> str:
        head = f"{self.verb} {self.succeeded} package(s)"
        if self.failed:
            head += f", failed {self.failed}"
            if self.throttled:
                head += f" ({self.throttled} throttled)"
        lines = [head + "."]
        listed = self.errors[: self.maxListed]
        lines.extend(listed)
        hidden = len(self.errors) - len(listed)
        if hidden > 0:
            lines.append(f"... and {hidden} more")
        return "\n".join(lines)



def summarizeResults(
    results: Iterable[OperationResult],
    *,
    verb: str,
    maxListed: int = DEFAULT_MAX_LISTED_ERRORS,
) -> BatchSummary:
    summary = BatchSummary(verb=verb, maxListed=maxListed)
    for result in results:
        if result.success:
            summary.succeeded += 1
            continue
        summary.failed += 1
        if result.throttled:
            summary.throttled += 1
        reason = result.errorReason
        # Safety-skip reasons already carry the file name
        if not reason.startswith(result.identifier):
            reason = f"{result.identifier}: {reason}"
        summary.errors.append(reason)
    return summary
