# tests/packstate/content/test_safe_file_ops.py
from __future__ import annotations
import asyncio
import errno
import os
import shutil
from pathlib import Path

import pytest

from packstate.content.batch_results import OperationErrorKind, summarizeResults
from packstate.content.safe_file_ops import (
    FileSystem,
    MovePhase,
    RetryPolicy,
    SafeFileOperator,
    conflictFreePath,
    removeEmptyDirectories,
)
from packstate.core.tracing import getTraceHub


def _lockedRename(src: Path, dst: Path) -> None:
    raise PermissionError(errno.EACCES, "file is in use", str(src))


class RecordingFs:
    """Real filesystem primitives plus a call log and per-path lock list."""
    def __init__(self, *, lockedRename: bool = False, lockedRemove: set[Path] | None = None) -> None:
        self.calls: list[str] = []
        self.lockedRename = lockedRename
        self.lockedRemove = lockedRemove or set()

    def rename(self, src: Path, dst: Path) -> None:
        self.calls.append("rename")
        if self.lockedRename:
            _lockedRename(src, dst)
        os.rename(src, dst)

    def copy(self, src: Path, dst: Path) -> None:
        self.calls.append("copy")
        shutil.copy2(src, dst)

    def remove(self, path: Path) -> None:
        self.calls.append("remove")
        if path in self.lockedRemove:
            raise PermissionError(errno.EACCES, "file is in use", str(path))
        os.remove(path)

    def fileSystem(self) -> FileSystem:
        return FileSystem(rename=self.rename, copy=self.copy, remove=self.remove)


# ----------------------------
# Safety guard
# ----------------------------

@pytest.mark.asyncio
async def test_safetyGuard_neverTouchesNonVarFiles(tmp_path: Path, fakeSleep) -> None:
    notes = tmp_path / "notes.txt"
    notes.write_text("keep me")
    package = tmp_path / "A.Foo.1.var"
    package.write_bytes(b"v")
    fs = RecordingFs()
    operator = SafeFileOperator(fs=fs.fileSystem(), sleep=fakeSleep)

    outcomes = [
        await operator.move(notes, tmp_path / "out" / "notes.txt"),
        await operator.delete(notes),
        await operator.move(package, tmp_path / "out" / "A.Foo.1.zip"),
    ]

    for outcome in outcomes:
        assert not outcome.success
        assert outcome.errorKind is OperationErrorKind.SAFETY_SKIP
        assert "skipped for safety" in outcome.errorReason
    assert fs.calls == []
    assert notes.read_text() == "keep me"
    assert package.exists()
    assert not (tmp_path / "out").exists()


# ----------------------------
# Conflicts
# ----------------------------

def test_conflictFreePath_countsUpPastManyConflicts(tmp_path: Path) -> None:
    (tmp_path / "a.var").write_bytes(b"0")
    assert conflictFreePath(tmp_path / "a.var") == tmp_path / "a_conflict1.var"
    for n in range(1, 121):
        (tmp_path / f"a_conflict{n}.var").write_bytes(b"0")
    assert conflictFreePath(tmp_path / "a.var") == tmp_path / "a_conflict121.var"
    assert conflictFreePath(tmp_path / "b.var") == tmp_path / "b.var"


@pytest.mark.asyncio
async def test_move_intoOccupiedNameUsesConflictSuffix(tmp_path: Path) -> None:
    src = tmp_path / "src" / "a.var"
    src.parent.mkdir()
    src.write_bytes(b"new")
    dstDir = tmp_path / "dst"
    dstDir.mkdir()
    (dstDir / "a.var").write_bytes(b"old")
    (dstDir / "a_conflict1.var").write_bytes(b"older")

    outcome = await SafeFileOperator().move(src, dstDir / "a.var")

    assert outcome.success
    assert outcome.destination == dstDir / "a_conflict2.var"
    assert (dstDir / "a_conflict2.var").read_bytes() == b"new"
    assert (dstDir / "a.var").read_bytes() == b"old"


@pytest.mark.asyncio
async def test_move_withoutConflictResolutionRefusesOccupiedDestination(tmp_path: Path) -> None:
    src = tmp_path / "A.Foo.1.var"
    src.write_bytes(b"new")
    (tmp_path / "out").mkdir()
    (tmp_path / "out" / "A.Foo.1.var").write_bytes(b"old")

    outcome = await SafeFileOperator().move(src, tmp_path / "out" / "A.Foo.1.var", resolveConflicts=False)

    assert not outcome.success
    assert outcome.errorKind is OperationErrorKind.DESTINATION
    assert src.exists()


# ----------------------------
# Move state machine
# ----------------------------

@pytest.mark.asyncio
async def test_move_plainRenameGoesStraightToDone(tmp_path: Path, fakeSleep) -> None:
    src = tmp_path / "A.Foo.1.var"
    src.write_bytes(b"v")
    fs = RecordingFs()

    outcome = await SafeFileOperator(fs=fs.fileSystem(), sleep=fakeSleep).move(src, tmp_path / "deep" / "er" / "A.Foo.1.var")

    assert outcome.success
    assert outcome.phases == (MovePhase.RENAMING, MovePhase.DONE)
    assert outcome.attempts == 1
    assert fakeSleep.calls == []
    assert (tmp_path / "deep" / "er" / "A.Foo.1.var").exists()


@pytest.mark.asyncio
async def test_move_retriesWithLinearBackoffThenCopies(tmp_path: Path, fakeSleep) -> None:
    src = tmp_path / "A.Foo.1.var"
    src.write_bytes(b"payload")
    os.utime(src, (1_500_000_000, 1_500_000_000))
    dst = tmp_path / "out" / "A.Foo.1.var"
    fs = RecordingFs(lockedRename=True)

    outcome = await SafeFileOperator(fs=fs.fileSystem(), sleep=fakeSleep).move(src, dst)

    assert outcome.success
    assert outcome.attempts == 5
    assert fakeSleep.calls == pytest.approx([0.05, 0.1, 0.15, 0.2])
    assert outcome.phases == (
        MovePhase.RENAMING,
        MovePhase.RETRYING,
        MovePhase.RETRYING,
        MovePhase.RETRYING,
        MovePhase.RETRYING,
        MovePhase.COPY_FALLBACK,
        MovePhase.DONE,
    )
    assert fs.calls == ["rename"] * 5 + ["copy", "remove"]
    assert dst.read_bytes() == b"payload"
    assert dst.stat().st_mtime == pytest.approx(1_500_000_000)
    assert not src.exists()

    events = [record.get("eventName") for record in getTraceHub().snapshot()]
    assert events.count("files.retry") == 4
    assert events.count("files.copyFallback") == 1


@pytest.mark.asyncio
async def test_move_recoversWhenLockClearsDuringRetries(tmp_path: Path, fakeSleep) -> None:
    src = tmp_path / "A.Foo.1.var"
    src.write_bytes(b"v")
    attempts = 0

    def flakyRename(first: Path, second: Path) -> None:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            _lockedRename(first, second)
        os.rename(first, second)

    operator = SafeFileOperator(fs=FileSystem(rename=flakyRename), sleep=fakeSleep)
    outcome = await operator.move(src, tmp_path / "out" / "A.Foo.1.var")

    assert outcome.success
    assert outcome.phases == (MovePhase.RENAMING, MovePhase.RETRYING, MovePhase.RETRYING, MovePhase.DONE)
    assert fakeSleep.calls == pytest.approx([0.05, 0.1])


@pytest.mark.asyncio
async def test_move_crossDeviceSkipsRetries(tmp_path: Path, fakeSleep) -> None:
    src = tmp_path / "A.Foo.1.var"
    src.write_bytes(b"v")

    def crossDevice(first: Path, second: Path) -> None:
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    outcome = await SafeFileOperator(fs=FileSystem(rename=crossDevice), sleep=fakeSleep).move(src, tmp_path / "o" / "A.Foo.1.var")

    assert outcome.success
    assert outcome.phases == (MovePhase.RENAMING, MovePhase.COPY_FALLBACK, MovePhase.DONE)
    assert fakeSleep.calls == []


@pytest.mark.asyncio
async def test_move_sourceDeleteFailureAfterCopyStillSucceeds(tmp_path: Path, fakeSleep) -> None:
    src = tmp_path / "A.Foo.1.var"
    src.write_bytes(b"v")
    dst = tmp_path / "out" / "A.Foo.1.var"
    fs = RecordingFs(lockedRename=True, lockedRemove={src})

    outcome = await SafeFileOperator(policy=RetryPolicy(maxAttempts=2), fs=fs.fileSystem(), sleep=fakeSleep).move(src, dst)

    assert outcome.success
    assert outcome.sourceLeftBehind
    assert src.exists() and dst.exists()
    # one backoff for the rename, one for the source delete
    assert fakeSleep.calls == pytest.approx([0.05, 0.05])


@pytest.mark.asyncio
async def test_move_copyFailureFailsAndCleansPartialFile(tmp_path: Path, fakeSleep) -> None:
    src = tmp_path / "A.Foo.1.var"
    src.write_bytes(b"v")
    dst = tmp_path / "out" / "A.Foo.1.var"

    def brokenCopy(first: Path, second: Path) -> None:
        second.write_bytes(b"partial")
        raise OSError(errno.ENOSPC, "No space left on device")

    operator = SafeFileOperator(policy=RetryPolicy(maxAttempts=1), fs=FileSystem(rename=_lockedRename, copy=brokenCopy), sleep=fakeSleep)
    outcome = await operator.move(src, dst)

    assert not outcome.success
    assert outcome.phases[-2:] == (MovePhase.COPY_FALLBACK, MovePhase.FAILED)
    assert outcome.errorKind is OperationErrorKind.LOCKED
    assert src.exists()
    assert not dst.exists()


@pytest.mark.asyncio
async def test_move_vanishedSourceFailsWithoutRetry(tmp_path: Path, fakeSleep) -> None:
    src = tmp_path / "A.Foo.1.var"
    src.write_bytes(b"v")

    def vanished(first: Path, second: Path) -> None:
        raise FileNotFoundError(errno.ENOENT, "gone", str(first))

    outcome = await SafeFileOperator(fs=FileSystem(rename=vanished), sleep=fakeSleep).move(src, tmp_path / "o" / "A.Foo.1.var")

    assert not outcome.success
    assert outcome.errorKind is OperationErrorKind.NOT_FOUND
    assert outcome.phases == (MovePhase.RENAMING, MovePhase.FAILED)
    assert fakeSleep.calls == []


@pytest.mark.asyncio
async def test_move_missingSourceIsReported(tmp_path: Path) -> None:
    outcome = await SafeFileOperator().move(tmp_path / "A.Foo.1.var", tmp_path / "o" / "A.Foo.1.var")
    assert not outcome.success
    assert outcome.errorKind is OperationErrorKind.NOT_FOUND
    assert outcome.toResult().identifier == "A.Foo.1.var"


# ----------------------------
# Delete
# ----------------------------

@pytest.mark.asyncio
async def test_delete_retriesThenReportsLock(tmp_path: Path, fakeSleep) -> None:
    target = tmp_path / "A.Foo.1.var"
    target.write_bytes(b"v")
    fs = RecordingFs(lockedRemove={target})

    outcome = await SafeFileOperator(fs=fs.fileSystem(), sleep=fakeSleep).delete(target)

    assert not outcome.success
    assert outcome.errorKind is OperationErrorKind.LOCKED
    assert outcome.attempts == 5
    assert fs.calls == ["remove"] * 5
    assert fakeSleep.calls == pytest.approx([0.05, 0.1, 0.15, 0.2])
    assert target.exists()


@pytest.mark.asyncio
async def test_deleteMany_continuesPastFailures(tmp_path: Path, fakeSleep) -> None:
    paths = [tmp_path / f"A.Pack{idx}.1.var" for idx in range(1, 6)]
    for path in paths:
        path.write_bytes(b"v")
    fs = RecordingFs(lockedRemove={paths[2]})
    seen: list[tuple[int, int, str]] = []

    results = await SafeFileOperator(fs=fs.fileSystem(), sleep=fakeSleep).deleteMany(
        paths, progress=lambda done, total, name: seen.append((done, total, name)),
    )

    assert len(results) == 5
    assert [result.success for result in results] == [True, True, False, True, True]
    assert results[2].identifier == "A.Pack3.1.var"
    assert [path.exists() for path in paths] == [False, False, True, False, False]
    assert [entry[0] for entry in seen] == [1, 2, 3, 4, 5]

    summary = summarizeResults(results, verb="Deleted")
    assert summary.text.splitlines()[0] == "Deleted 4 package(s), failed 1."


@pytest.mark.asyncio
async def test_deleteMany_stopsBetweenFilesWhenCancelled(tmp_path: Path) -> None:
    paths = [tmp_path / f"A.Pack{idx}.1.var" for idx in range(1, 4)]
    for path in paths:
        path.write_bytes(b"v")
    cancel = asyncio.Event()

    def cancelAfterFirst(done: int, total: int, name: str) -> None:
        cancel.set()

    results = await SafeFileOperator().deleteMany(paths, progress=cancelAfterFirst, cancel=cancel)

    assert len(results) == 1
    assert [path.exists() for path in paths] == [False, True, True]


# ----------------------------
# Directory pruning
# ----------------------------

def test_removeEmptyDirectories_stopsAtRootAndAtContent(tmp_path: Path) -> None:
    root = tmp_path / "root"
    (root / "keep").mkdir(parents=True)
    (root / "keep" / "other.var").write_bytes(b"v")
    (root / "keep" / "a" / "b").mkdir(parents=True)
    (root / "gone" / "x").mkdir(parents=True)

    removeEmptyDirectories(root / "keep" / "a" / "b", root)
    removeEmptyDirectories(root / "gone" / "x", root)

    assert not (root / "keep" / "a").exists()
    assert (root / "keep").exists()
    assert not (root / "gone").exists()
    assert root.exists()
