# packstate/content/safe_file_ops.py
from __future__ import annotations
import asyncio
import errno
import logging
import os
import shutil
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packstate.app.globals import getTracer
from packstate.content.batch_results import (
    OperationErrorKind,
    OperationResult,
    SAFETY_SKIP_REASON,
)
from packstate.content.package_identity import isVarPath

logger = logging.getLogger(__name__)

__all__ = [
    "SleepFn",
    "ProgressFn",
    "RetryPolicy",
    "MovePhase",
    "MoveState",
    "FileSystem",
    "FileOpOutcome",
    "SafeFileOperator",
    "conflictFreePath",
    "removeEmptyDirectories",
]

SleepFn = Callable[[float], Awaitable[None]]
ProgressFn = Callable[[int, int, str], None]

# Upper bound for `_conflictN` probing
MAX_CONFLICT_SUFFIX = 10_000



@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Linear backoff: attempt N failing waits `backoffStepMs * N` before attempt N+1."""
    maxAttempts: int = 5
    backoffStepMs: int = 50

    def delaySeconds(self, attempt: int) -> float:
        return (self.backoffStepMs * attempt) / 1000.0



class MovePhase(Enum):
    RENAMING = "renaming"
    RETRYING = "retrying"
    COPY_FALLBACK = "copyFallback"
    DONE = "done"
    FAILED = "failed"

    @property
    def isTerminal(self) -> bool:
        return self in (MovePhase.DONE, MovePhase.FAILED)



@dataclass
class MoveState:
    phase: MovePhase = MovePhase.RENAMING
    attempts: int = 0
    lastError: str = ""
    errorKind: OperationErrorKind | None = None
    sourceLeftBehind: bool = False
    history: list[MovePhase] = field(default_factory=lambda: [MovePhase.RENAMING])

    def goTo(self, phase: MovePhase) -> "MoveState":
        self.phase = phase
        self.history.append(phase)
        return self



def _copyPreservingTimes(src: Path, dst: Path) -> None:
    # copy2 carries mtime/atime; creation time follows the platform's rules
    shutil.copy2(src, dst)



@dataclass(frozen=True)
class FileSystem:
    """Filesystem primitives the operator uses. Tests swap these for fakes."""
    rename: Callable[[Path, Path], None] = os.rename
    copy: Callable[[Path, Path], None] = _copyPreservingTimes
    remove: Callable[[Path], None] = os.remove



@dataclass(frozen=True)
class FileOpOutcome:
    source: Path
    destination: Path | None
    success: bool
    errorReason: str = ""
    errorKind: OperationErrorKind | None = None
    phases: tuple[MovePhase, ...] = ()
    attempts: int = 0
    sourceLeftBehind: bool = False

    def toResult(self, identifier: str | None = None) -> OperationResult:
        ident = identifier or self.source.name
        if self.success:
            return OperationResult.ok(ident, self.destination or self.source)
        return OperationResult.failed(ident, self.errorReason, self.errorKind or OperationErrorKind.UNEXPECTED, self.source)



def conflictFreePath(dst: Path) -> Path:
    """
    `dst` itself when free, else the first free `<stem>_conflictN<ext>`
    with N counting up from 1.
    """
    if not dst.exists():
        return dst
    for n in range(1, MAX_CONFLICT_SUFFIX + 1):
        candidate = dst.with_name(f"{dst.stem}_conflict{n}{dst.suffix}")
        if not candidate.exists():
            return candidate
    raise FileExistsError(f"No free conflict name for '{dst.name}' after {MAX_CONFLICT_SUFFIX} attempts")



def removeEmptyDirectories(directory: Path, root: Path) -> None:
    """Remove `directory` and its parents while empty, stopping at `root` (kept)."""
    try:
        rootResolved = root.resolve()
        current = directory.resolve()
        current.relative_to(rootResolved)
    except (OSError, ValueError):
        return
    while current != rootResolved:
        try:
            if any(current.iterdir()):
                return
            current.rmdir()
        except OSError as err:
            logger.debug("Leaving directory '%s' in place: %s", current, err)
            return
        current = current.parent



class SafeFileOperator:
    """
    Guarded move/delete for package files.

    - Only `.var` paths are ever touched.
    - Move runs the Renaming → Retrying → CopyFallback → Done/Failed machine.
    - Delete retries with the same policy and has no fallback.
    - Failures come back as FileOpOutcome values; nothing is raised per file.
    """
    def __init__(
        self,
        *,
        policy: RetryPolicy | None = None,
        sleep: SleepFn | None = None,
        fs: FileSystem | None = None,
        yieldEvery: int = 10,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._fs = fs or FileSystem()
        self.yieldEvery = max(0, yieldEvery)

    # ----- Guards -----

    def _guard(self, path: Path) -> FileOpOutcome | None:
        if isVarPath(path):
            return None
        return FileOpOutcome(
            source=path,
            destination=None,
            success=False,
            errorReason=f"{path.name}: {SAFETY_SKIP_REASON}",
            errorKind=OperationErrorKind.SAFETY_SKIP,
        )

    async def _retrying(self, action: Callable[[], None]) -> tuple[int, OSError | None]:
        """Run `action` up to maxAttempts times. Returns (attempts, lastError or None)."""
        lastErr: OSError | None = None
        for attempt in range(1, self.policy.maxAttempts + 1):
            try:
                action()
                return attempt, None
            except FileNotFoundError as err:
                return attempt, err
            except OSError as err:
                lastErr = err
                if attempt < self.policy.maxAttempts:
                    await self._sleep(self.policy.delaySeconds(attempt))
        return self.policy.maxAttempts, lastErr

    # ----- Move -----

    async def move(self, src: Path | str, dst: Path | str, *, resolveConflicts: bool = True) -> FileOpOutcome:
        src, dst = Path(src), Path(dst)
        blocked = self._guard(src) or self._guard(dst)
        if blocked is not None:
            return blocked

        if not src.is_file():
            return FileOpOutcome(src, dst, False, f"File does not exist: {src.name}", OperationErrorKind.NOT_FOUND)

        if resolveConflicts:
            try:
                dst = conflictFreePath(dst)
            except FileExistsError as err:
                return FileOpOutcome(src, dst, False, str(err), OperationErrorKind.DESTINATION)
        elif dst.exists():
            return FileOpOutcome(src, dst, False, "Destination file already exists", OperationErrorKind.DESTINATION)

        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            return FileOpOutcome(
                src, dst, False,
                f"Cannot create destination directory '{dst.parent}': {err}",
                OperationErrorKind.DESTINATION,
            )

        state = MoveState()
        while not state.phase.isTerminal:
            state = await self._advance(state, src, dst)

        success = state.phase is MovePhase.DONE
        if success:
            logger.debug("Moved '%s' → '%s' (%s)", src.name, dst, "/".join(p.value for p in state.history))
        else:
            logger.warning("Move of '%s' failed after %d attempt(s): %s", src.name, state.attempts, state.lastError)
        return FileOpOutcome(
            source=src,
            destination=dst,
            success=success,
            errorReason="" if success else state.lastError,
            errorKind=None if success else (state.errorKind or OperationErrorKind.LOCKED),
            phases=tuple(state.history),
            attempts=state.attempts,
            sourceLeftBehind=state.sourceLeftBehind,
        )

    async def _advance(self, state: MoveState, src: Path, dst: Path) -> MoveState:
        tracer = getTracer()

        if state.phase in (MovePhase.RENAMING, MovePhase.RETRYING):
            state.attempts += 1
            try:
                self._fs.rename(src, dst)
                return state.goTo(MovePhase.DONE)
            except FileNotFoundError as err:
                state.lastError = f"File disappeared during move: {err}"
                state.errorKind = OperationErrorKind.NOT_FOUND
                return state.goTo(MovePhase.FAILED)
            except OSError as err:
                state.lastError = f"File is locked or in use: {err}"
                if err.errno == errno.EXDEV or state.attempts >= self.policy.maxAttempts:
                    tracer.traceEvent(
                        "files.copyFallback",
                        attrs={"file": src.name, "attempts": state.attempts, "crossDevice": err.errno == errno.EXDEV},
                        tags=["files", "move"],
                    )
                    return state.goTo(MovePhase.COPY_FALLBACK)
                delay = self.policy.delaySeconds(state.attempts)
                tracer.traceEvent(
                    "files.retry",
                    attrs={"file": src.name, "attempt": state.attempts, "delayMs": delay * 1000.0},
                    tags=["files", "move", "retry"],
                )
                await self._sleep(delay)
                return state.goTo(MovePhase.RETRYING)

        if state.phase is MovePhase.COPY_FALLBACK:
            try:
                self._fs.copy(src, dst)
            except OSError as err:
                self._discardPartialCopy(dst)
                state.lastError = f"Failed to copy file: {err}"
                state.errorKind = OperationErrorKind.LOCKED
                return state.goTo(MovePhase.FAILED)

            _attempts, deleteErr = await self._retrying(lambda: self._fs.remove(src))
            if deleteErr is not None and not isinstance(deleteErr, FileNotFoundError):
                # Destination is complete; the stray source is left for a later cleanup
                state.sourceLeftBehind = True
                logger.warning("Copied '%s' but could not delete the source: %s", src.name, deleteErr)
                tracer.traceEvent(
                    "files.sourceLeftBehind",
                    attrs={"file": src.name, "error": str(deleteErr)},
                    level="warn",
                    tags=["files", "move"],
                )
            return state.goTo(MovePhase.DONE)

        raise RuntimeError(f"Move state machine stuck in terminal phase {state.phase}")

    def _discardPartialCopy(self, dst: Path) -> None:
        try:
            if dst.exists():
                self._fs.remove(dst)
        except OSError as err:
            logger.warning("Could not remove partial copy '%s': %s", dst, err)

    # ----- Delete -----

    async def delete(self, path: Path | str) -> FileOpOutcome:
        path = Path(path)
        blocked = self._guard(path)
        if blocked is not None:
            return blocked
        if not path.is_file():
            return FileOpOutcome(path, None, False, f"File does not exist: {path.name}", OperationErrorKind.NOT_FOUND)

        attempts, err = await self._retrying(lambda: self._fs.remove(path))
        if err is None:
            return FileOpOutcome(path, None, True, attempts=attempts)
        kind = OperationErrorKind.NOT_FOUND if isinstance(err, FileNotFoundError) else OperationErrorKind.LOCKED
        logger.warning("Delete of '%s' failed after %d attempt(s): %s", path.name, attempts, err)
        return FileOpOutcome(path, None, False, f"{path.name}: {err}", kind, attempts=attempts)

    async def deleteMany(
        self,
        paths: Iterable[Path | str],
        *,
        progress: ProgressFn | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[OperationResult]:
        """
        Delete sequentially, continuing past failures. Cancellation is honoured
        between files only; unattempted files are absent from the results.
        """
        items = [Path(path) for path in paths]
        total = len(items)
        results: list[OperationResult] = []
        successes = 0
        tracer = getTracer()
        span = tracer.startSpan("files.delete", attrs={"count": total}, tags=["files", "delete"])
        try:
            for idx, path in enumerate(items, start=1):
                if cancel is not None and cancel.is_set():
                    tracer.traceEvent("files.delete.cancelled", attrs={"attempted": idx - 1}, span=span)
                    break
                outcome = await self.delete(path)
                results.append(outcome.toResult(path.name))
                if outcome.success:
                    successes += 1
                    if self.yieldEvery and successes % self.yieldEvery == 0:
                        await asyncio.sleep(0)
                if progress is not None:
                    progress(idx, total, path.name)
        finally:
            tracer.endSpan(
                span,
                status="ok",
                attrs={"deleted": successes, "failed": len(results) - successes},
                tags=["files", "delete"],
            )
        return results
