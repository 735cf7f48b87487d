# packstate/content/status_index.py
from __future__ import annotations
import logging
import threading
from collections.abc import Iterable
from pathlib import Path

from packstate.content.instance_locator import iterVarFiles
from packstate.content.package_identity import DependencyReference, PackageIdentity, VAR_EXTENSION
from packstate.content.package_metadata import MetadataLookup
from packstate.content.package_status import (
    Archived,
    Available,
    External,
    Loaded,
    Missing,
    Outdated,
    PackageStatus,
    StatusDisplay,
    Unknown,
    displayFor,
)
from packstate.content.storage_roots import ExternalDestination, StorageRoots

logger = logging.getLogger(__name__)

__all__ = ["StatusIndex", "DirectorySignature"]

# (var file count, directory mtime); None when the root is absent
DirectorySignature = tuple[int, float] | None



def _signatureOf(root: Path | None, *, skipArchived: bool = True) -> DirectorySignature:
    if root is None:
        return None
    try:
        mtime = root.stat().st_mtime
    except OSError:
        return None
    count = sum(1 for _ in iterVarFiles(root, skipArchived=skipArchived))
    return (count, mtime)



def _namesFor(path: Path) -> list[str]:
    """Index keys for one file: its full name, plus its base name when parseable."""
    fullName = path.name[: -len(VAR_EXTENSION)]
    names = [fullName]
    ident = PackageIdentity.fromFilename(path.name)
    if ident is not None:
        names.append(ident.baseName)
    return names



class StatusIndex:
    """
    Cached name → PackageStatus map over the storage roots.

    Placement precedence is Loaded, then Available, then Archived, then
    External: a name already indexed is never overridden by a later root.
    Names are matched case-insensitively, as a full name ("A.Foo.3") or a
    base name ("A.Foo").

    Outdated is not a placement. An Available package whose metadata says it
    is an old version (isOldVersion, or version below latestVersionNumber) is
    reported as Outdated. Those flags are trusted as given.
    """
    def __init__(self, roots: StorageRoots, metadataLookup: MetadataLookup | None = None) -> None:
        self.roots = roots
        self.metadata = metadataLookup
        self._lock = threading.RLock()
        self._entries: dict[str, PackageStatus] = {}
        self._signatures: dict[str, DirectorySignature] = {}
        self._registered: dict[str, PackageStatus] = {}
        self._built = False
        self._stale = False

    # ----- Public API -----

    def status(self, name: str) -> PackageStatus:
        key = (name or "").strip()
        if key.lower().endswith(VAR_EXTENSION):
            key = key[: -len(VAR_EXTENSION)]
        if not key:
            return Unknown()
        with self._lock:
            if not self._built or self._stale:
                self.refresh(force=True)
            placement = self._entries.get(key.casefold())
            if placement is None:
                # .latest / .minN / an absent exact version: any copy of the base name counts
                baseName = DependencyReference.parse(key).baseName
                if baseName and baseName.casefold() != key.casefold():
                    placement = self._entries.get(baseName.casefold())
                    key = baseName
        if placement is None:
            return Missing()
        if isinstance(placement, Available) and self._isOldVersion(key):
            return Outdated()
        return placement

    def display(self, name: str) -> StatusDisplay:
        colors = {dest.id: dest.statusColor for dest in self.roots.externalDestinations}
        return displayFor(self.status(name), colors)

    def refresh(self, force: bool = False) -> bool:
        """
        Rebuild the index. Without `force` the rebuild is skipped while every
        root's signature is unchanged. Returns True when a rebuild happened.
        """
        with self._lock:
            signatures = self._currentSignatures()
            if not force and self._built and not self._stale and signatures == self._signatures:
                return False
            self._entries = self._scan()
            self._signatures = signatures
            self._built = True
            self._stale = False
        logger.debug("Status index rebuilt with %d name(s)", len(self._entries))
        return True

    def invalidate(self, names: Iterable[str] = ()) -> None:
        """Drop cached entries for `names`; the next status() call rebuilds."""
        with self._lock:
            for name in names:
                for key in self._keysFor(name):
                    self._entries.pop(key, None)
            self._stale = True

    def registerExternal(self, name: str, destination: ExternalDestination) -> None:
        """
        Mark `name` as living in an external destination unless already
        indexed. Registrations survive rebuilds, below every scanned root.
        """
        status = External(destination.id, destination.name)
        with self._lock:
            for key in self._keysFor(name):
                self._registered.setdefault(key, status)
                self._entries.setdefault(key, status)

    def snapshot(self) -> dict[str, PackageStatus]:
        with self._lock:
            return dict(self._entries)

    # ----- Internals -----

    def _keysFor(self, name: str) -> list[str]:
        key = (name or "").strip()
        if not key:
            return []
        if key.lower().endswith(VAR_EXTENSION):
            key = key[: -len(VAR_EXTENSION)]
        keys = [key.casefold()]
        ident = PackageIdentity.parse(key)
        if ident is not None:
            keys.append(ident.baseName.casefold())
        return keys

    def _isOldVersion(self, name: str) -> bool:
        if self.metadata is None:
            return False
        meta = self.metadata.get(name)
        if meta is None:
            return False
        return meta.isOldVersion or (meta.latestVersionNumber > 0 and meta.version < meta.latestVersionNumber)

    def _currentSignatures(self) -> dict[str, DirectorySignature]:
        out: dict[str, DirectorySignature] = {
            "loaded": _signatureOf(self.roots.loadedRoot),
            "available": _signatureOf(self.roots.availableRoot),
            "archive": _signatureOf(self.roots.archiveRoot, skipArchived=False),
        }
        for dest in self.roots.externalDestinations:
            out[f"external:{dest.id}"] = _signatureOf(dest.path) if dest.isScannable else None
        return out

    def _scan(self) -> dict[str, PackageStatus]:
        entries: dict[str, PackageStatus] = {}

        def _fill(root: Path | None, status: PackageStatus, *, skipArchived: bool = True) -> None:
            if root is None:
                return
            for path in iterVarFiles(root, skipArchived=skipArchived):
                for key in _namesFor(path):
                    entries.setdefault(key.casefold(), status)

        _fill(self.roots.loadedRoot, Loaded())
        _fill(self.roots.availableRoot, Available())
        _fill(self.roots.archiveRoot, Archived(), skipArchived=False)
        for dest in sorted(self.roots.externalDestinations, key=lambda item: (item.sortOrder, item.id.casefold())):
            if dest.isScannable:
                _fill(dest.path, External(dest.id, dest.name))
        for key, status in self._registered.items():
            entries.setdefault(key, status)
        return entries
