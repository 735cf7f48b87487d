# packstate/content/orchestrator.py
from __future__ import annotations
import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from packstate.app.globals import getTracer
from packstate.content.batch_results import (
    BatchSummary,
    DEFAULT_MAX_LISTED_ERRORS,
    OperationErrorKind,
    OperationResult,
    THROTTLED_REASON,
    summarizeResults,
)
from packstate.content.dependency_resolver import expand
from packstate.content.instance_locator import iterVarFiles
from packstate.content.package_identity import DependencyReference, PackageIdentity, VersionKind, sameName
from packstate.content.package_metadata import MetadataLookup
from packstate.content.safe_file_ops import ProgressFn, SafeFileOperator, removeEmptyDirectories
from packstate.content.status_index import StatusIndex
from packstate.content.storage_roots import StorageRoots
from packstate.core.errors import EmptySelectionError
from packstate.core.ids import uuid_12
from packstate.core.logging import logContext

logger = logging.getLogger(__name__)

__all__ = [
    "OperationKind",
    "OperationThrottle",
    "OperationStatistics",
    "WorkItem",
    "ReleaseHandlesFn",
    "LoadUnloadOrchestrator",
]

ReleaseHandlesFn = Callable[[list[str]], Awaitable[None]]



class OperationKind(Enum):
    LOAD = "load"
    UNLOAD = "unload"

    @property
    def verb(self) -> str:
        return "Loaded" if self is OperationKind.LOAD else "Unloaded"



class OperationThrottle:
    """
    Rejects a repeat of the same operation key inside `windowMs`.
    The key is recorded when an attempt starts, whatever its outcome.
    """
    def __init__(self, windowMs: int = 1000, clock: Callable[[], float] = time.monotonic) -> None:
        self.windowMs = windowMs
        self._clock = clock
        self._lastRun: dict[str, float] = {}
        self._lock = threading.Lock()

    def tryAcquire(self, key: str) -> bool:
        if self.windowMs <= 0:
            return True
        now = self._clock()
        window = self.windowMs / 1000.0
        with self._lock:
            last = self._lastRun.get(key)
            if last is not None and (now - last) < window:
                return False
            self._lastRun[key] = now
            if len(self._lastRun) > 256:
                self._lastRun = {k: ts for k, ts in self._lastRun.items() if (now - ts) < window}
        return True

    def reset(self) -> None:
        with self._lock:
            self._lastRun.clear()



@dataclass
class OperationStatistics:
    total: int = 0
    successful: int = 0

    @property
    def failed(self) -> int:
        return self.total - self.successful

    @property
    def failureRate(self) -> float:
        return self.failed / self.total if self.total else 0.0



@dataclass(frozen=True, slots=True)
class WorkItem:
    name: str
    isDependency: bool = False
    externalPath: Path | None = None

    @property
    def isExternal(self) -> bool:
        return self.externalPath is not None



def _findInRoot(ref: DependencyReference, root: Path | None, *, strict: bool, preferLatest: bool = True) -> Path | None:
    """
    Best file for `ref` under `root` (archive subtrees excluded).
    strict=True only accepts a version that satisfies the reference; otherwise
    an exact reference falls back to the latest version present.
    """
    if root is None or not ref.baseName:
        return None
    byVersion: dict[int, Path] = {}
    for path in iterVarFiles(root):
        ident = PackageIdentity.fromFilename(path.name)
        if ident is None or not sameName(ident.baseName, ref.baseName):
            continue
        byVersion.setdefault(ident.numericVersion, path)
    best = ref.findBestMatch(byVersion.keys(), preferLatest=preferLatest)
    if best is None:
        return None
    if strict and not ref.isSatisfiedBy(best):
        return None
    return byVersion[best]



def _relocate(path: Path, fromRoot: Path, toRoot: Path) -> Path:
    try:
        return toRoot / path.relative_to(fromRoot)
    except ValueError:
        return toRoot / path.name



class LoadUnloadOrchestrator:
    """
    Moves packages between the available root and the loaded root.

    Batches run sequentially inside one task. A failing item never stops the
    batch, and a repeat of the same item within the throttle window is
    rejected with a THROTTLED result instead of being retried.
    """
    def __init__(
        self,
        roots: StorageRoots,
        operator: SafeFileOperator,
        *,
        metadata: MetadataLookup | None = None,
        statusIndex: StatusIndex | None = None,
        releaseHandles: ReleaseHandlesFn | None = None,
        throttle: OperationThrottle | None = None,
        yieldEvery: int = 10,
        maxListedErrors: int = DEFAULT_MAX_LISTED_ERRORS,
    ) -> None:
        self.roots = roots
        self.operator = operator
        self.metadata = metadata
        self.statusIndex = statusIndex
        self.releaseHandles = releaseHandles
        self.throttle = throttle or OperationThrottle()
        self.yieldEvery = max(0, yieldEvery)
        self.maxListedErrors = maxListedErrors
        self._stats = OperationStatistics()
        self._statsLock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Batches
    # ------------------------------------------------------------------ #

    async def run(
        self,
        names: Iterable[str],
        kind: OperationKind,
        *,
        withDeps: bool = False,
        progress: ProgressFn | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[OperationResult]:
        selected = [name.strip() for name in names if name and name.strip()]
        if not selected:
            raise EmptySelectionError(kind.value)
        self.roots.requireConfigured()

        items = self._workItems(selected, kind, withDeps)
        batchId = uuid_12("batch_")
        tracer = getTracer()

        with logContext(batchId=batchId, operation=kind.value):
            span = tracer.startSpan(
                "engine.batch",
                attrs={
                    "items": len(items),
                    "selected": len(selected),
                    "dependencies": sum(1 for item in items if item.isDependency),
                },
                tags=["engine", kind.value],
                contextOverrides={"batchId": batchId, "operation": kind.value},
            )
            results: list[OperationResult] = []
            try:
                if self.releaseHandles is not None:
                    await self.releaseHandles([item.name for item in items])

                ordered = [item for item in items if item.isExternal] + [item for item in items if not item.isExternal]
                total = len(ordered)
                successes = 0
                for idx, item in enumerate(ordered, start=1):
                    if cancel is not None and cancel.is_set():
                        tracer.traceEvent("engine.batch.cancelled", attrs={"attempted": idx - 1}, span=span)
                        logger.info("Batch cancelled after %d of %d item(s)", idx - 1, total)
                        break
                    result = await self._runItem(item, kind)
                    results.append(result)
                    if result.success:
                        successes += 1
                        if self.yieldEvery and successes % self.yieldEvery == 0:
                            await asyncio.sleep(0)
                    if progress is not None:
                        progress(idx, total, item.name)
            except Exception as err:
                tracer.endSpan(span, status="error", level="error", errorType=type(err).__name__, errorMessage=str(err))
                raise

            self._record(results)
            self._refreshStatus(results)
            summary = self.summarize(results, kind)
            tracer.endSpan(
                span,
                status="ok",
                attrs={"succeeded": summary.succeeded, "failed": summary.failed, "throttled": summary.throttled},
                tags=["engine", kind.value],
            )
            logger.info("%s", summary.text.splitlines()[0])
        return results

    def summarize(self, results: Iterable[OperationResult], kind: OperationKind) -> BatchSummary:
        return summarizeResults(results, verb=kind.verb, maxListed=self.maxListedErrors)

    def statistics(self) -> OperationStatistics:
        with self._statsLock:
            return OperationStatistics(total=self._stats.total, successful=self._stats.successful)

    def _workItems(self, selected: list[str], kind: OperationKind, withDeps: bool) -> list[WorkItem]:
        items = [self._itemFor(name, kind) for name in selected]
        if not withDeps or self.metadata is None:
            return items

        statusOf = self.statusIndex.status if self.statusIndex is not None else None
        expansion = expand(selected, self.metadata, statusOf)
        if kind is OperationKind.UNLOAD:
            items.extend(WorkItem(name, isDependency=True) for name in expansion.alreadyLoaded)
            return items
        for dep in expansion.external:
            path = dep.metadata.filePath if dep.metadata is not None else None
            items.append(WorkItem(dep.loadName, isDependency=True, externalPath=path))
        for dep in expansion.localAvailable:
            items.append(WorkItem(dep.loadName, isDependency=True))
        return items

    def _itemFor(self, name: str, kind: OperationKind) -> WorkItem:
        if kind is OperationKind.LOAD and self.metadata is not None:
            meta = self.metadata.get(name)
            if meta is not None and meta.isExternal and meta.filePath is not None:
                return WorkItem(name, externalPath=meta.filePath)
        return WorkItem(name)

    async def _runItem(self, item: WorkItem, kind: OperationKind) -> OperationResult:
        try:
            if kind is OperationKind.UNLOAD:
                return await self.unload(item.name)
            if item.externalPath is not None:
                return await self.loadExternal(item.name, item.externalPath)
            return await self.load(item.name)
        except OSError as err:
            logger.exception("Unexpected filesystem error on '%s'", item.name)
            return OperationResult.failed(item.name, str(err), OperationErrorKind.UNEXPECTED)

    def _record(self, results: list[OperationResult]) -> None:
        with self._statsLock:
            self._stats.total += len(results)
            self._stats.successful += sum(1 for result in results if result.success)

    def _refreshStatus(self, results: list[OperationResult]) -> None:
        if self.statusIndex is None:
            return
        mutated = [result.identifier for result in results if result.success]
        if not mutated:
            return
        self.statusIndex.invalidate(mutated)
        self.statusIndex.refresh(force=True)

    def _throttled(self, key: str, name: str) -> OperationResult | None:
        if self.throttle.tryAcquire(key):
            return None
        getTracer().traceEvent("engine.throttled", attrs={"key": key}, level="info", tags=["engine", "throttle"])
        logger.debug("Throttled '%s'", key)
        return OperationResult.failed(name, THROTTLED_REASON, OperationErrorKind.THROTTLED)

    # ------------------------------------------------------------------ #
    # Single items
    # ------------------------------------------------------------------ #

    async def load(self, name: str) -> OperationResult:
        """
        Move the best matching file from the available root into the loaded
        root, keeping its relative subfolder. Already loaded is a success.
        """
        throttled = self._throttled(f"load_{name}", name)
        if throttled is not None:
            return throttled

        ref = DependencyReference.parse(name)
        loadedRoot, availableRoot = self.roots.loadedRoot, self.roots.availableRoot
        if _findInRoot(ref, loadedRoot, strict=True) is not None:
            return OperationResult.ok(name)

        source = _findInRoot(ref, availableRoot, strict=False, preferLatest=ref.kind is not VersionKind.MINIMUM)
        if source is None or availableRoot is None:
            return OperationResult.failed(
                name, f"Package '{name}' not found in available locations", OperationErrorKind.NOT_FOUND,
            )
        if loadedRoot is None:
            return OperationResult.failed(name, "Loaded root is not configured", OperationErrorKind.DESTINATION, source)

        destination = _relocate(source, availableRoot, loadedRoot)
        if destination.exists():
            return OperationResult.ok(name, destination)

        outcome = await self.operator.move(source, destination, resolveConflicts=False)
        if outcome.success:
            removeEmptyDirectories(source.parent, availableRoot)
        return outcome.toResult(name)

    async def loadExternal(self, name: str, path: Path) -> OperationResult:
        """Move a file from an external destination straight into the loaded root."""
        throttled = self._throttled(f"load_external_{name}", name)
        if throttled is not None:
            return throttled

        loaded = _findInRoot(DependencyReference.parse(name), self.roots.loadedRoot, strict=True)
        if loaded is not None:
            return OperationResult.ok(name, loaded)
        if not path.is_file():
            return OperationResult.failed(name, f"External file not found: {path}", OperationErrorKind.NOT_FOUND, path)
        loadedRoot = self.roots.loadedRoot
        if loadedRoot is None:
            return OperationResult.failed(name, "Loaded root is not configured", OperationErrorKind.DESTINATION, path)

        destination = loadedRoot / path.name
        if destination.exists():
            return OperationResult.ok(name, destination)
        outcome = await self.operator.move(path, destination, resolveConflicts=False)
        return outcome.toResult(name)

    async def unload(self, name: str) -> OperationResult:
        """
        Move a loaded package back into the available root. When the available
        root already holds the same file, the loaded copy is deleted instead.
        """
        throttled = self._throttled(f"unload_{name}", name)
        if throttled is not None:
            return throttled

        ref = DependencyReference.parse(name)
        loadedRoot, availableRoot = self.roots.loadedRoot, self.roots.availableRoot
        source = _findInRoot(ref, loadedRoot, strict=True)
        if source is None or loadedRoot is None:
            return OperationResult.failed(
                name, f"Package '{name}' not found in loaded packages", OperationErrorKind.NOT_FOUND,
            )
        if availableRoot is None:
            return OperationResult.failed(name, "Available root is not configured", OperationErrorKind.DESTINATION, source)

        destination = _relocate(source, loadedRoot, availableRoot)
        if destination.exists():
            outcome = await self.operator.delete(source)
            if not outcome.success:
                return OperationResult.failed(
                    name,
                    f"Failed to remove loaded copy: {outcome.errorReason}",
                    outcome.errorKind or OperationErrorKind.LOCKED,
                    source,
                )
        else:
            outcome = await self.operator.move(source, destination, resolveConflicts=False)
            if not outcome.success:
                return outcome.toResult(name)

        removeEmptyDirectories(source.parent, loadedRoot)
        return OperationResult.ok(name, destination)
