# tests/packstate/content/test_storage_roots.py
from __future__ import annotations
from pathlib import Path

import pytest

from packstate.content.storage_roots import (
    ExternalDestination,
    RoleKind,
    StorageRole,
    StorageRoots,
    preferredRole,
    rolePriority,
    roleSortKey,
)
from packstate.core.errors import NoRootsConfiguredError


def test_rolePriority_loadedBeatsAvailableBeatsExternal() -> None:
    assert rolePriority(StorageRole.loaded()) < rolePriority(StorageRole.available())
    assert rolePriority(StorageRole.available()) < rolePriority(StorageRole.external("usb"))


def test_preferredRole_usesDestinationOrderBetweenExternals() -> None:
    roles = [StorageRole.external("b"), StorageRole.external("a")]
    assert preferredRole(roles, {"a": 5, "b": 1}) == StorageRole.external("b")
    assert preferredRole(roles + [StorageRole.available()]) == StorageRole.available()
    assert preferredRole([]) is None
    assert roleSortKey(StorageRole.loaded()) < roleSortKey(StorageRole.external("a"))


def test_externalDestination_validityNeedsNameAndPath(tmp_path: Path) -> None:
    assert ExternalDestination(id="x", name="Drive", path=tmp_path).isScannable
    assert not ExternalDestination(id="x", name="", path=tmp_path).isValid()
    assert not ExternalDestination(id="x", name="Drive", path=None).isValid()
    assert not ExternalDestination(id="x", name="Drive", path=tmp_path / "gone").isScannable
    assert not ExternalDestination(id="x", name="Drive", path=tmp_path, enabled=False).isScannable


def test_build_resolvesRelativeRootsAndSlugsIds(tmp_path: Path) -> None:
    (tmp_path / "Ext").mkdir()
    roots = StorageRoots.build(
        baseDir=tmp_path,
        externalDestinations=[
            {"name": "My Drive", "path": "Ext"},
            {"name": "My Drive", "path": str(tmp_path / "Other")},
        ],
    )
    assert roots.loadedRoot == (tmp_path / "AddonPackages").resolve()
    assert roots.oldVersionsDir == (tmp_path / "ArchivedPackages" / "OldPackages").resolve()
    ids = [dest.id for dest in roots.externalDestinations]
    assert ids[0] == "my-drive"
    assert ids[1] != ids[0]
    assert roots.destination("MY-DRIVE") is roots.externalDestinations[0]


def test_searchRoots_skipsUnscannableAndDuplicateDirectories(tmp_path: Path) -> None:
    for name in ("AddonPackages", "AllPackages", "Ext", "Off"):
        (tmp_path / name).mkdir()
    roots = StorageRoots.build(
        baseDir=tmp_path,
        externalDestinations=[
            {"id": "ext", "name": "Ext", "path": "Ext"},
            {"id": "off", "name": "Off", "path": "Off", "enabled": False},
            {"id": "dup", "name": "Dup", "path": "AllPackages"},
            {"id": "missing", "name": "Missing", "path": "Nope"},
        ],
    )
    found = [(role.kind, role.destinationId) for role, _root in roots.searchRoots()]
    assert found == [
        (RoleKind.LOADED, None),
        (RoleKind.AVAILABLE, None),
        (RoleKind.EXTERNAL, "ext"),
    ]
    assert roots.roleOf(tmp_path / "Ext" / "A.Foo.1.var") == StorageRole.external("ext")


def test_requireConfigured_raisesWithoutRoots() -> None:
    roots = StorageRoots(loadedRoot=None, availableRoot=None)
    with pytest.raises(NoRootsConfiguredError):
        roots.requireConfigured()


def test_rootFor_mapsRolesToDirectories(tmp_path: Path) -> None:
    roots = StorageRoots.build(baseDir=tmp_path, externalDestinations=[{"id": "usb", "name": "USB", "path": "Usb"}])

    assert roots.rootFor(StorageRole.loaded()) == roots.loadedRoot
    assert roots.rootFor(StorageRole.available()) == (tmp_path / "AllPackages").resolve()
    assert roots.rootFor(StorageRole.external("USB")) == (tmp_path / "Usb").resolve()
    assert roots.rootFor(StorageRole.external("gone")) is None
