# tests/packstate/content/test_archiver.py
from __future__ import annotations

import pytest

from packstate.content.archiver import archiveOldVersions
from packstate.content.package_metadata import MetadataCatalog
from packstate.content.package_status import Archived, Available
from packstate.content.safe_file_ops import SafeFileOperator
from packstate.content.status_index import StatusIndex
from packstate.content.storage_roots import StorageRoots


@pytest.mark.asyncio
async def test_archiveOldVersions_movesOnlyFlaggedFiles(roots: StorageRoots, makeVar) -> None:
    assert roots.availableRoot is not None and roots.loadedRoot is not None and roots.oldVersionsDir is not None
    makeVar(roots.availableRoot / "A.Foo.1.var")
    makeVar(roots.loadedRoot / "A.Foo.2.var")
    makeVar(roots.availableRoot / "A.Foo.3.var")
    makeVar(roots.availableRoot / "B.Bar.1.var")
    catalog = MetadataCatalog.scan(roots, readManifests=False)
    index = StatusIndex(roots, catalog)

    results = await archiveOldVersions(catalog.all(), roots, SafeFileOperator(), statusIndex=index)

    assert sorted(r.identifier for r in results) == ["A.Foo.1", "A.Foo.2"]
    assert all(r.success for r in results)
    assert sorted(path.name for path in roots.oldVersionsDir.iterdir()) == ["A.Foo.1.var", "A.Foo.2.var"]
    assert (roots.availableRoot / "A.Foo.3.var").exists()
    assert index.status("A.Foo.1") == Archived()
    assert index.status("B.Bar.1") == Available()


@pytest.mark.asyncio
async def test_archiveOldVersions_replacesExistingArchivedCopy(roots: StorageRoots, makeVar) -> None:
    assert roots.availableRoot is not None and roots.oldVersionsDir is not None
    makeVar(roots.availableRoot / "A.Foo.1.var", size=5)
    makeVar(roots.availableRoot / "A.Foo.2.var")
    makeVar(roots.oldVersionsDir / "A.Foo.1.var", size=1)
    catalog = MetadataCatalog.scan(roots, readManifests=False)

    (result,) = await archiveOldVersions(catalog.all(), roots, SafeFileOperator())

    assert result.success
    assert (roots.oldVersionsDir / "A.Foo.1.var").stat().st_size == 5
    assert not list(roots.oldVersionsDir.glob("*_conflict*"))
