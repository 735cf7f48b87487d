# packstate/content/package_metadata.py
from __future__ import annotations
import logging
import threading
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import json5
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from packstate.content.instance_locator import iterVarFiles, locateAll
from packstate.content.package_identity import DependencyReference, PackageIdentity, sameName
from packstate.content.package_status import PackageStatus
from packstate.content.storage_roots import RoleKind, StorageRoots

logger = logging.getLogger(__name__)

__all__ = [
    "VarManifest",
    "PackageMetadata",
    "MetadataLookup",
    "MetadataCatalog",
    "readVarManifest",
    "detectOldVersions",
]

MANIFEST_ENTRY = "meta.json"



class VarManifest(BaseModel):
    """The `meta.json` every .var archive carries at its root."""
    model_config = ConfigDict(extra="allow")

    creatorName: str | None = None
    packageName: str | None = None
    description: str | None = None
    dependencies: dict[str, Any] = Field(default_factory=dict)



def readVarManifest(path: Path) -> VarManifest | None:
    """
    Read and validate `meta.json` from a .var (zip) archive.
    Corrupt archives, missing manifests and invalid manifests return None.
    """
    try:
        with zipfile.ZipFile(path) as archive:
            entryName = next(
                (name for name in archive.namelist() if name.lower() == MANIFEST_ENTRY),
                None,
            )
            if entryName is None:
                return None
            raw = archive.read(entryName).decode("utf-8-sig", errors="replace")
    except (OSError, zipfile.BadZipFile) as err:
        logger.debug("Cannot open '%s' as a package archive: %s", path, err)
        return None

    try:
        parsed = json5.loads(raw)
        return VarManifest.model_validate(parsed)
    except (ValueError, ValidationError) as err:
        logger.warning("Invalid manifest in '%s': %s", path.name, err)
        return None



@dataclass(kw_only=True, slots=True)
class PackageMetadata:
    """
    What the metadata collaborator knows about one package version.
    `isOldVersion` / `latestVersionNumber` are trusted as given.
    """
    creatorName: str
    packageName: str
    version: int
    filename: str = ""
    dependencies: list[str] = field(default_factory=list)
    filePath: Path | None = None
    fileSize: int = 0
    isExternal: bool = False
    externalDestinationId: str | None = None
    status: PackageStatus | None = None
    isOldVersion: bool = False
    latestVersionNumber: int = 0

    @property
    def baseName(self) -> str:
        return f"{self.creatorName}.{self.packageName}"

    @property
    def fullName(self) -> str:
        return f"{self.baseName}.{self.version}"

    @classmethod
    def fromFile(
        cls,
        path: Path,
        *,
        readManifest: bool = True,
        externalDestinationId: str | None = None,
    ) -> "PackageMetadata | None":
        ident = PackageIdentity.fromFilename(path.name)
        if ident is None:
            return None
        deps: list[str] = []
        if readManifest:
            manifest = readVarManifest(path)
            if manifest is not None:
                deps = list(manifest.dependencies.keys())
        try:
            size = path.stat().st_size
        except OSError:
            size = 0
        return cls(
            creatorName=ident.creatorName,
            packageName=ident.packageName,
            version=ident.numericVersion,
            filename=path.name,
            dependencies=deps,
            filePath=path,
            fileSize=size,
            isExternal=externalDestinationId is not None,
            externalDestinationId=externalDestinationId,
        )



class MetadataLookup(Protocol):
    def get(self, name: str) -> PackageMetadata | None: ...
    def versionsOf(self, baseName: str) -> list[PackageMetadata]: ...



def detectOldVersions(records: Iterable[PackageMetadata]) -> list[PackageMetadata]:
    """
    Group by base name, stamp `latestVersionNumber` on every record and flag
    every record below it as `isOldVersion`. Returns the flagged records.
    """
    groups: dict[str, list[PackageMetadata]] = {}
    for meta in records:
        groups.setdefault(meta.baseName.casefold(), []).append(meta)

    old: list[PackageMetadata] = []
    for group in groups.values():
        latest = max(meta.version for meta in group)
        for meta in group:
            meta.latestVersionNumber = latest
            meta.isOldVersion = meta.version < latest
            if meta.isOldVersion:
                old.append(meta)
    old.sort(key=lambda meta: (meta.baseName.casefold(), meta.version))
    return old



class MetadataCatalog:
    """
    In-memory MetadataLookup keyed case-insensitively by full name.

    get("A.Foo.3") returns that version; get("A.Foo") or get("A.Foo.latest")
    returns the highest known version.
    """
    def __init__(self, records: Iterable[PackageMetadata] = ()) -> None:
        self._byFullName: dict[str, PackageMetadata] = {}
        self._lock = threading.RLock()
        self.registerMany(records)

    def __len__(self) -> int:
        return len(self._byFullName)

    def register(self, meta: PackageMetadata) -> None:
        """Later registrations of the same full name win, except that a local
        record is never replaced by an external one."""
        key = meta.fullName.casefold()
        with self._lock:
            existing = self._byFullName.get(key)
            if existing is not None and not existing.isExternal and meta.isExternal:
                return
            self._byFullName[key] = meta

    def registerMany(self, records: Iterable[PackageMetadata]) -> None:
        for meta in records:
            self.register(meta)

    def all(self) -> list[PackageMetadata]:
        with self._lock:
            return sorted(self._byFullName.values(), key=lambda meta: (meta.baseName.casefold(), meta.version))

    def versionsOf(self, baseName: str) -> list[PackageMetadata]:
        with self._lock:
            out = [meta for meta in self._byFullName.values() if sameName(meta.baseName, baseName)]
        out.sort(key=lambda meta: meta.version)
        return out

    def getExact(self, fullName: str) -> PackageMetadata | None:
        with self._lock:
            return self._byFullName.get((fullName or "").strip().casefold())

    def get(self, name: str) -> PackageMetadata | None:
        name = (name or "").strip()
        if not name:
            return None
        with self._lock:
            exact = self._byFullName.get(name.casefold())
        if exact is not None:
            return exact
        # ".latest", ".minN" and absent exact versions resolve against the base name
        ref = DependencyReference.parse(name)
        versions = {meta.version: meta for meta in self.versionsOf(ref.baseName)}
        best = ref.findBestMatch(versions.keys())
        return versions[best] if best is not None else None

    def detectOldVersions(self) -> list[PackageMetadata]:
        return detectOldVersions(self.all())

    # ----- Construction -----

    @classmethod
    def scan(cls, roots: StorageRoots, *, readManifests: bool = True) -> "MetadataCatalog":
        """
        Build a catalog from every package file under the search roots and the
        archive root, then flag old versions.
        """
        catalog = cls()
        for _baseName, instances in locateAll(roots).items():
            for inst in instances:
                destId = inst.role.destinationId if inst.role.kind is RoleKind.EXTERNAL else None
                meta = PackageMetadata.fromFile(inst.path, readManifest=readManifests, externalDestinationId=destId)
                if meta is not None:
                    meta.fileSize = inst.size
                    catalog.register(meta)
        if roots.archiveRoot is not None:
            for path in iterVarFiles(roots.archiveRoot, skipArchived=False):
                meta = PackageMetadata.fromFile(path, readManifest=readManifests)
                if meta is not None and catalog.getExact(meta.fullName) is None:
                    catalog.register(meta)
        old = catalog.detectOldVersions()
        logger.debug("Catalog scanned %d package file(s), %d old version(s)", len(catalog), len(old))
        return catalog
