# packstate/content/resolution_planner.py
from __future__ import annotations
import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from packstate.app.globals import getTracer
from packstate.content.batch_results import OperationResult
from packstate.content.duplicate_analyzer import DuplicateGroup
from packstate.content.instance_locator import FileInstance
from packstate.content.safe_file_ops import ProgressFn, SafeFileOperator
from packstate.content.storage_roots import StorageRole
from packstate.core.errors import PlanAbortedError, ResolutionError

logger = logging.getLogger(__name__)

__all__ = [
    "CandidateFallback",
    "ResolutionDecision",
    "ResolutionPlan",
    "DisambiguateFn",
    "plan",
    "applyPlan",
    "defaultDecisions",
]

# (displayName, candidatePaths) -> chosen path, or None when the user cancels
DisambiguateFn = Callable[[str, list[Path]], Path | None]



class CandidateFallback(Enum):
    """What to do when the kept role holds several files and nobody chose one."""
    NONE = "none"                # abort the plan
    MOST_RECENT = "mostRecent"   # newest mtime, ties broken by path



@dataclass(frozen=True, slots=True)
class ResolutionDecision:
    keepRole: StorageRole | None
    selectedPath: Path | None = None

    @classmethod
    def keep(cls, role: StorageRole, selectedPath: Path | str | None = None) -> "ResolutionDecision":
        return cls(keepRole=role, selectedPath=Path(selectedPath) if selectedPath is not None else None)

    @classmethod
    def skip(cls) -> "ResolutionDecision":
        return cls(keepRole=None)

    @property
    def isSkip(self) -> bool:
        return self.keepRole is None



@dataclass(frozen=True)
class ResolutionPlan:
    keepSet: tuple[Path, ...] = ()
    deleteSet: tuple[Path, ...] = ()
    noSelection: bool = False

    @classmethod
    def empty(cls) -> "ResolutionPlan":
        return cls(noSelection=True)



def _pathKey(path: Path) -> str:
    return str(path).casefold()



class _OrderedPathSet:
    """Insertion-ordered set of paths compared case-insensitively."""
    def __init__(self) -> None:
        self._items: dict[str, Path] = {}

    def add(self, path: Path) -> None:
        self._items.setdefault(_pathKey(path), path)

    def discard(self, path: Path) -> None:
        self._items.pop(_pathKey(path), None)

    def __contains__(self, path: Path) -> bool:
        return _pathKey(path) in self._items

    def toTuple(self) -> tuple[Path, ...]:
        return tuple(self._items.values())



def _mostRecent(candidates: list[FileInstance]) -> FileInstance:
    return sorted(candidates, key=lambda inst: (-inst.modifiedAt, _pathKey(inst.path)))[0]



def _pickKept(
    group: DuplicateGroup,
    role: StorageRole,
    decision: ResolutionDecision,
    disambiguate: DisambiguateFn | None,
    fallback: CandidateFallback,
) -> Path:
    candidates = group.candidatesIn(role)
    if not candidates:
        raise ResolutionError(f"'{group.filename}' has no copy in {role.label}")
    if len(candidates) == 1:
        return candidates[0].path

    byKey = {_pathKey(inst.path): inst.path for inst in candidates}

    chosen = decision.selectedPath
    if chosen is None and disambiguate is not None:
        chosen = disambiguate(group.filename, [inst.path for inst in candidates])
        if chosen is None:
            raise PlanAbortedError(group.filename)
    if chosen is None:
        if fallback is CandidateFallback.MOST_RECENT:
            return _mostRecent(candidates).path
        raise PlanAbortedError(group.filename)

    kept = byKey.get(_pathKey(Path(chosen)))
    if kept is None:
        raise ResolutionError(f"'{chosen}' is not a copy of '{group.filename}' in {role.label}")
    return kept



def plan(
    groups: Iterable[DuplicateGroup],
    decisions: Mapping[str, ResolutionDecision],
    *,
    disambiguate: DisambiguateFn | None = None,
    fallback: CandidateFallback = CandidateFallback.NONE,
) -> ResolutionPlan:
    """
    Turn per-group decisions into keep and delete sets.

    `decisions` is keyed by group filename (case-insensitive). Groups without
    a decision, or with a skip decision, contribute nothing. Nothing is
    touched here: a PlanAbortedError leaves every group unresolved.

    Every instance of a decided group lands in exactly one of the two sets.
    """
    byFilename = {name.casefold(): decision for name, decision in decisions.items()}
    keep = _OrderedPathSet()
    delete = _OrderedPathSet()
    decided = 0

    tracer = getTracer()
    span = tracer.startSpan("resolution.plan", attrs={"decisions": len(byFilename)}, tags=["resolution"])
    try:
        for group in groups:
            decision = byFilename.get(group.filename.casefold())
            if decision is None or decision.isSkip:
                continue
            assert decision.keepRole is not None
            kept = _pickKept(group, decision.keepRole, decision, disambiguate, fallback)
            keep.add(kept)
            for inst in group.instances:
                if _pathKey(inst.path) != _pathKey(kept):
                    delete.add(inst.path)
            decided += 1
    except ResolutionError as err:
        tracer.endSpan(span, status="error", level="warn", errorType=type(err).__name__, errorMessage=str(err))
        raise

    for path in keep.toTuple():
        delete.discard(path)

    result = ResolutionPlan(keepSet=keep.toTuple(), deleteSet=delete.toTuple(), noSelection=decided == 0)
    tracer.endSpan(span, status="ok", attrs={"groups": decided, "keep": len(result.keepSet), "delete": len(result.deleteSet)})
    logger.debug("Resolution plan: %d group(s), keep %d, delete %d", decided, len(result.keepSet), len(result.deleteSet))
    return result



def defaultDecisions(groups: Iterable[DuplicateGroup]) -> dict[str, ResolutionDecision]:
    """Keep every group in its default (highest priority) role."""
    return {group.filename: ResolutionDecision.keep(group.defaultKeep) for group in groups}



async def applyPlan(
    resolution: ResolutionPlan,
    operator: SafeFileOperator,
    *,
    progress: ProgressFn | None = None,
    cancel: asyncio.Event | None = None,
) -> list[OperationResult]:
    """Delete everything in the plan's delete set. Kept files are never touched."""
    if resolution.noSelection or not resolution.deleteSet:
        return []
    return await operator.deleteMany(resolution.deleteSet, progress=progress, cancel=cancel)
