# tests/packstate/content/test_dependency_resolver.py
from __future__ import annotations
from pathlib import Path

from packstate.content.dependency_resolver import DependencyResolver, expand, highestVersion
from packstate.content.package_metadata import MetadataCatalog, PackageMetadata
from packstate.content.package_status import (
    Archived,
    Available,
    External,
    Loaded,
    Missing,
    Outdated,
    PackageStatus,
)


def _meta(fullName: str, *deps: str, external: bool = False) -> PackageMetadata:
    creator, rest = fullName.split(".", 1)
    package, version = rest.rsplit(".", 1)
    return PackageMetadata(
        creatorName=creator,
        packageName=package,
        version=int(version),
        filename=f"{fullName}.var",
        dependencies=list(deps),
        filePath=Path("/ext" if external else "/local") / f"{fullName}.var",
        isExternal=external,
        externalDestinationId="usb" if external else None,
    )


def test_expand_classifiesDependenciesByStatus() -> None:
    catalog = MetadataCatalog([
        _meta("Me.Scene.1", "Dep.Avail.latest", "Dep.Old.2", "Dep.Arch.1", "Dep.Ext.3",
              "Dep.Loaded.1", "Dep.Gone.1", "Me.Other.1"),
        _meta("Me.Other.1"),
        _meta("Dep.Avail.1"),
        _meta("Dep.Avail.4"),
        _meta("Dep.Old.2"),
        _meta("Dep.Arch.1"),
        _meta("Dep.Ext.3", external=True),
        _meta("Dep.Loaded.1"),
    ])
    statuses: dict[str, PackageStatus] = {
        "Dep.Avail": Available(),
        "Dep.Old": Outdated(),
        "Dep.Arch": Archived(),
        "Dep.Ext": External("usb", "USB"),
        "Dep.Loaded": Loaded(),
    }

    result = expand(["Me.Scene.1", "Me.Other"], catalog, lambda name: statuses.get(name, Missing()))

    assert [item.baseName for item in result.localAvailable] == ["Dep.Avail", "Dep.Old", "Dep.Arch"]
    assert [item.loadName for item in result.localAvailable] == ["Dep.Avail.4", "Dep.Old.2", "Dep.Arch.1"]
    assert [item.baseName for item in result.external] == ["Dep.Ext"]
    assert result.external[0].metadata is not None and result.external[0].metadata.isExternal
    assert result.alreadyLoaded == ["Dep.Loaded"]
    assert result.omitted == ["Dep.Gone"]
    assert len(result) == 4


def test_expand_doesNotFollowTransitiveDependencies() -> None:
    catalog = MetadataCatalog([
        _meta("A.Top.1", "B.Mid.1"),
        _meta("B.Mid.1", "C.Leaf.1"),
        _meta("C.Leaf.1"),
    ])
    result = expand(["A.Top.1"], catalog, lambda _name: Available())
    assert [item.baseName for item in result.loadable] == ["B.Mid"]


def test_expand_deduplicatesAcrossSelectedPackages() -> None:
    catalog = MetadataCatalog([
        _meta("A.One.1", "Shared.Lib.1"),
        _meta("A.Two.1", "shared.lib.latest"),
        _meta("Shared.Lib.1"),
    ])
    result = DependencyResolver(catalog, lambda _name: Available()).expand(["A.One", "A.Two"])
    assert [item.baseName for item in result.localAvailable] == ["Shared.Lib"]


def test_expand_onlyExternalRecordWithUnknownStatusCountsAsExternal() -> None:
    catalog = MetadataCatalog([_meta("A.Top.1", "X.Ext.1"), _meta("X.Ext.1", external=True)])
    result = expand(["A.Top.1"], catalog)
    assert [item.loadName for item in result.external] == ["X.Ext.1"]


def test_highestVersion_isDeterministic() -> None:
    records = [_meta("A.Foo.2"), _meta("A.Foo.10"), _meta("A.Foo.3")]
    best = highestVersion(records)
    assert best is not None and best.version == 10
    assert highestVersion([]) is None


def test_expand_resolvesVersionReferencesInSelection() -> None:
    catalog = MetadataCatalog([
        _meta("Me.Scene.2", "Dep.Old.1"),
        _meta("Me.Scene.4", "Dep.New.1", "Me.Scene.1"),
        _meta("Dep.Old.1"),
        _meta("Dep.New.1"),
    ])

    def statusOf(_name: str) -> PackageStatus:
        return Available()

    minimum = expand(["Me.Scene.min3"], catalog, statusOf)
    latest = expand(["Me.Scene.latest"], catalog, statusOf)

    assert [item.baseName for item in minimum.localAvailable] == ["Dep.New"]
    assert [item.baseName for item in latest.localAvailable] == ["Dep.New"]
    assert catalog.get("Me.Scene.min1") is not None and catalog.get("Me.Scene.min1").version == 4
    assert catalog.get("Me.Scene.min9") is not None and catalog.get("Me.Scene.min9").version == 4
