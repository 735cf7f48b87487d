# packstate/content/instance_locator.py
from __future__ import annotations
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from packstate.content.package_identity import PackageIdentity, VAR_EXTENSION
from packstate.content.storage_roots import ARCHIVE_SEGMENT, StorageRole, StorageRoots

logger = logging.getLogger(__name__)

__all__ = ["FileInstance", "InstanceLocator", "iterVarFiles", "isArchivedPath", "locate", "locateAll"]



@dataclass(frozen=True, slots=True)
class FileInstance:
    """One physical package file in one role."""
    path: Path
    role: StorageRole
    size: int
    modifiedAt: float # seconds since epoch

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def identity(self) -> PackageIdentity | None:
        return PackageIdentity.fromFilename(self.path.name)



def isArchivedPath(path: Path | str) -> bool:
    """True when any segment of `path` is the archive subtree (case-insensitive)."""
    needle = ARCHIVE_SEGMENT.casefold()
    return any(part.casefold() == needle for part in Path(path).parts)



def iterVarFiles(root: Path, *, skipArchived: bool = True) -> Iterator[Path]:
    """
    Recursively yield `.var` files under `root`.

    Missing or unreadable directories are skipped silently, a root that does
    not exist yields nothing. With skipArchived=True nothing under an
    `ArchivedPackages` segment is yielded, including when the root itself
    lives under one.
    """
    if skipArchived and isArchivedPath(root):
        return
    try:
        if not root.is_dir():
            return
    except OSError:
        return

    def _onError(err: OSError) -> None:
        logger.debug("Skipping unreadable directory '%s': %s", err.filename, err)

    needle = ARCHIVE_SEGMENT.casefold()
    for dirPath, dirNames, fileNames in os.walk(root, onerror=_onError):
        if skipArchived:
            dirNames[:] = [name for name in dirNames if name.casefold() != needle]
        dirNames.sort()
        for name in sorted(fileNames):
            if name.lower().endswith(VAR_EXTENSION):
                yield Path(dirPath) / name



def _statInstance(path: Path, role: StorageRole) -> FileInstance | None:
    try:
        st = path.stat()
    except OSError as err:
        # Vanished or locked between listing and stat
        logger.debug("Cannot stat '%s': %s", path, err)
        return None
    return FileInstance(path=path, role=role, size=st.st_size, modifiedAt=st.st_mtime)



def locate(baseName: str, roots: StorageRoots) -> list[FileInstance]:
    """
    Every file instance of `baseName` across the loaded root, the available
    root and scannable external destinations.

    Matches `<baseName>.*.var` case-insensitively. Instances under an
    `ArchivedPackages` segment are excluded. Absent roots contribute nothing.
    """
    prefix = (baseName.strip() + ".").casefold()
    if prefix == ".":
        return []
    out: list[FileInstance] = []
    for role, root in roots.searchRoots():
        for path in iterVarFiles(root):
            if not path.name.casefold().startswith(prefix):
                continue
            instance = _statInstance(path, role)
            if instance is not None:
                out.append(instance)
    return out



def locateAll(roots: StorageRoots) -> dict[str, list[FileInstance]]:
    """
    Every parseable package file across all search roots, grouped by
    base name (keys keep the casing of the first file seen).
    """
    grouped: dict[str, list[FileInstance]] = {}
    keys: dict[str, str] = {}
    for role, root in roots.searchRoots():
        for path in iterVarFiles(root):
            ident = PackageIdentity.fromFilename(path.name)
            if ident is None:
                continue
            instance = _statInstance(path, role)
            if instance is None:
                continue
            key = keys.setdefault(ident.baseName.casefold(), ident.baseName)
            grouped.setdefault(key, []).append(instance)
    return grouped



@dataclass
class InstanceLocator:
    """Locator bound to a set of roots."""
    roots: StorageRoots

    def locate(self, baseName: str) -> list[FileInstance]:
        return locate(baseName, self.roots)

    def locateAll(self) -> dict[str, list[FileInstance]]:
        return locateAll(self.roots)

    def inRole(self, baseName: str, role: StorageRole) -> list[FileInstance]:
        return [inst for inst in self.locate(baseName) if inst.role == role]
