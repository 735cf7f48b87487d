# packstate/content/archiver.py
from __future__ import annotations
import logging
from collections.abc import Iterable

from packstate.app.globals import getTracer
from packstate.content.batch_results import OperationErrorKind, OperationResult
from packstate.content.instance_locator import isArchivedPath
from packstate.content.package_metadata import PackageMetadata
from packstate.content.safe_file_ops import ProgressFn, SafeFileOperator
from packstate.content.status_index import StatusIndex
from packstate.content.storage_roots import StorageRoots

logger = logging.getLogger(__name__)

__all__ = ["archiveOldVersions"]



async def archiveOldVersions(
    records: Iterable[PackageMetadata],
    roots: StorageRoots,
    operator: SafeFileOperator,
    *,
    statusIndex: StatusIndex | None = None,
    progress: ProgressFn | None = None,
) -> list[OperationResult]:
    """
    Move every record flagged `isOldVersion` into `<archiveRoot>/OldPackages`.

    An existing file of the same name in the archive is replaced. External
    records and files already in the archive are left alone.
    """
    targetDir = roots.oldVersionsDir
    candidates = [
        meta for meta in records
        if meta.isOldVersion and not meta.isExternal and meta.filePath is not None and not isArchivedPath(meta.filePath)
    ]
    if targetDir is None:
        return [
            OperationResult.failed(meta.fullName, "Archive root is not configured", OperationErrorKind.DESTINATION, meta.filePath)
            for meta in candidates
        ]

    tracer = getTracer()
    span = tracer.startSpan("files.archive", attrs={"count": len(candidates)}, tags=["files", "archive"])
    results: list[OperationResult] = []
    for idx, meta in enumerate(candidates, start=1):
        assert meta.filePath is not None
        destination = targetDir / meta.filePath.name
        if destination.exists():
            replaced = await operator.delete(destination)
            if not replaced.success:
                results.append(OperationResult.failed(
                    meta.fullName,
                    f"Cannot replace archived copy: {replaced.errorReason}",
                    replaced.errorKind or OperationErrorKind.DESTINATION,
                    meta.filePath,
                ))
                if progress is not None:
                    progress(idx, len(candidates), meta.fullName)
                continue
        outcome = await operator.move(meta.filePath, destination, resolveConflicts=False)
        results.append(outcome.toResult(meta.fullName))
        if progress is not None:
            progress(idx, len(candidates), meta.fullName)

    archived = [result.identifier for result in results if result.success]
    if statusIndex is not None and archived:
        statusIndex.invalidate(archived)
        statusIndex.refresh(force=True)
    tracer.endSpan(span, status="ok", attrs={"archived": len(archived), "failed": len(results) - len(archived)})
    logger.info("Archived %d old version(s), %d failed", len(archived), len(results) - len(archived))
    return results
