# tests/packstate/content/test_package_metadata.py
from __future__ import annotations
from pathlib import Path

from packstate.content.package_metadata import (
    MetadataCatalog,
    PackageMetadata,
    detectOldVersions,
    readVarManifest,
)
from packstate.content.storage_roots import StorageRoots


def test_readVarManifest_readsDependencies(tmp_path: Path, makeVar) -> None:
    path = makeVar(tmp_path / "A.Foo.1.var", meta={
        "creatorName": "A",
        "packageName": "Foo",
        "dependencies": {"B.Bar.latest": {}, "C.Baz.3": {"dependencies": {}}},
    })
    manifest = readVarManifest(path)
    assert manifest is not None
    assert list(manifest.dependencies) == ["B.Bar.latest", "C.Baz.3"]

    meta = PackageMetadata.fromFile(path)
    assert meta is not None
    assert meta.fullName == "A.Foo.1"
    assert meta.dependencies == ["B.Bar.latest", "C.Baz.3"]


def test_readVarManifest_toleratesBrokenArchives(tmp_path: Path, makeVar) -> None:
    assert readVarManifest(makeVar(tmp_path / "A.Foo.1.var")) is None
    assert readVarManifest(tmp_path / "missing.var") is None
    assert PackageMetadata.fromFile(tmp_path / "not-a-package.var") is None


def test_detectOldVersions_flagsEverythingBelowLatest() -> None:
    records = [
        PackageMetadata(creatorName="A", packageName="Foo", version=v) for v in (1, 3, 2)
    ] + [PackageMetadata(creatorName="B", packageName="Bar", version=1)]

    old = detectOldVersions(records)

    assert [meta.fullName for meta in old] == ["A.Foo.1", "A.Foo.2"]
    assert all(meta.latestVersionNumber == 3 for meta in records[:3])
    assert not records[3].isOldVersion


def test_catalog_getResolvesExactThenHighest() -> None:
    catalog = MetadataCatalog([
        PackageMetadata(creatorName="A", packageName="Foo", version=1),
        PackageMetadata(creatorName="A", packageName="Foo", version=4),
    ])
    first = catalog.get("a.foo.1")
    assert first is not None and first.version == 1
    for name in ("A.Foo", "A.Foo.latest", "A.Foo.9"):
        meta = catalog.get(name)
        assert meta is not None and meta.version == 4
    assert catalog.get("") is None
    assert catalog.get("Z.Nope") is None


def test_catalog_externalRecordNeverReplacesLocal() -> None:
    catalog = MetadataCatalog()
    catalog.register(PackageMetadata(creatorName="A", packageName="Foo", version=1))
    catalog.register(PackageMetadata(creatorName="A", packageName="Foo", version=1, isExternal=True))
    local = catalog.getExact("A.Foo.1")
    assert local is not None and not local.isExternal


def test_catalog_scanCoversRootsAndArchive(roots: StorageRoots, makeVar, tmp_path: Path) -> None:
    assert roots.loadedRoot is not None and roots.availableRoot is not None and roots.archiveRoot is not None
    makeVar(roots.loadedRoot / "A.Foo.2.var", meta={"dependencies": {"B.Bar.1": {}}})
    makeVar(roots.availableRoot / "A.Foo.1.var")
    makeVar(roots.archiveRoot / "OldPackages" / "C.Baz.1.var")

    catalog = MetadataCatalog.scan(roots)

    assert [meta.fullName for meta in catalog.all()] == ["A.Foo.1", "A.Foo.2", "C.Baz.1"]
    newest = catalog.getExact("A.Foo.2")
    assert newest is not None and newest.dependencies == ["B.Bar.1"]
    oldest = catalog.getExact("A.Foo.1")
    assert oldest is not None and oldest.isOldVersion and oldest.latestVersionNumber == 2
