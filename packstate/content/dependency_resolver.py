# packstate/content/dependency_resolver.py
from __future__ import annotations
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from packstate.content.package_identity import DependencyReference, normalizeDependencyName
from packstate.content.package_metadata import MetadataLookup, PackageMetadata
from packstate.content.package_status import External, Loaded, PackageStatus, Unknown, isLocallyAvailable

logger = logging.getLogger(__name__)

__all__ = ["DependencyItem", "DependencyExpansion", "DependencyResolver", "expand", "highestVersion"]

StatusFn = Callable[[str], PackageStatus]



@dataclass(frozen=True, slots=True)
class DependencyItem:
    baseName: str
    metadata: PackageMetadata | None = None

    @property
    def loadName(self) -> str:
        """Name to hand to load(): the chosen full name when known."""
        return self.metadata.fullName if self.metadata is not None else self.baseName



@dataclass
class DependencyExpansion:
    localAvailable: list[DependencyItem] = field(default_factory=list)
    external: list[DependencyItem] = field(default_factory=list)
    alreadyLoaded: list[str] = field(default_factory=list)
    omitted: list[str] = field(default_factory=list)

    @property
    def loadable(self) -> list[DependencyItem]:
        return self.external + self.localAvailable

    def __len__(self) -> int:
        return len(self.localAvailable) + len(self.external)



def highestVersion(records: Iterable[PackageMetadata]) -> PackageMetadata | None:
    """Highest version wins; equal versions fall back to filename order."""
    ordered = sorted(records, key=lambda meta: (meta.version, meta.filename.casefold()))
    return ordered[-1] if ordered else None



def _metadataStatus(lookup: MetadataLookup) -> StatusFn:
    def _statusOf(baseName: str) -> PackageStatus:
        meta = lookup.get(baseName)
        if meta is None or meta.status is None:
            return Unknown()
        return meta.status
    return _statusOf



def expand(
    selectedBaseNames: Iterable[str],
    metadataLookup: MetadataLookup,
    statusOf: StatusFn | None = None,
) -> DependencyExpansion:
    """
    Collect the direct dependencies of the selected packages and classify them.

    Dependencies already among the selection are left out. Each remaining
    base name is classified by its current status:
      • Available / Outdated / Archived → localAvailable
      • External, or only known from an external record → external
      • Loaded → alreadyLoaded (nothing to do)
      • anything else → omitted silently
    Dependencies of dependencies are not followed.
    """
    statusFn = statusOf or _metadataStatus(metadataLookup)
    selected = [name.strip() for name in selectedBaseNames if name and name.strip()]
    selectedKeys = {DependencyReference.parse(name).baseName.casefold() for name in selected}

    ordered: dict[str, str] = {}
    for name in selected:
        meta = metadataLookup.get(name)
        if meta is None:
            continue
        for raw in meta.dependencies:
            baseName = normalizeDependencyName(raw)
            key = baseName.casefold()
            if not baseName or key in selectedKeys:
                continue
            ordered.setdefault(key, baseName)

    expansion = DependencyExpansion()
    for baseName in ordered.values():
        versions = metadataLookup.versionsOf(baseName)
        status = statusFn(baseName)
        local = highestVersion(meta for meta in versions if not meta.isExternal)
        remote = highestVersion(meta for meta in versions if meta.isExternal)

        if isinstance(status, Loaded):
            expansion.alreadyLoaded.append(baseName)
        elif isLocallyAvailable(status):
            expansion.localAvailable.append(DependencyItem(baseName, local or highestVersion(versions)))
        elif isinstance(status, External) or (local is None and remote is not None):
            expansion.external.append(DependencyItem(baseName, remote or highestVersion(versions)))
        else:
            expansion.omitted.append(baseName)

    logger.debug(
        "Dependency expansion: %d local, %d external, %d loaded, %d omitted",
        len(expansion.localAvailable), len(expansion.external),
        len(expansion.alreadyLoaded), len(expansion.omitted),
    )
    return expansion



@dataclass
class DependencyResolver:
    metadata: MetadataLookup
    statusOf: StatusFn | None = None

    def expand(self, selectedBaseNames: Iterable[str]) -> DependencyExpansion:
        return expand(selectedBaseNames, self.metadata, self.statusOf)
