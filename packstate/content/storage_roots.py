# packstate/content/storage_roots.py
from __future__ import annotations
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packstate.core.errors import NoRootsConfiguredError

__all__ = [
    "ARCHIVE_SEGMENT",
    "OLD_PACKAGES_DIR",
    "RoleKind",
    "StorageRole",
    "ExternalDestination",
    "StorageRoots",
    "rolePriority",
    "roleSortKey",
    "preferredRole",
    "isUnder",
]

# Any path segment with this name is invisible to discovery and load/unload
ARCHIVE_SEGMENT = "ArchivedPackages"
OLD_PACKAGES_DIR = "OldPackages"
DEFAULT_STATUS_COLOR = "#808080"

# ------------------------------------------------------------------ #
# Roles
# ------------------------------------------------------------------ #

class RoleKind(Enum):
    LOADED = "loaded"
    AVAILABLE = "available"
    EXTERNAL = "external"



@dataclass(frozen=True, slots=True)
class StorageRole:
    """Where a file instance lives. External roles carry their destination id."""
    kind: RoleKind
    destinationId: str | None = None

    @classmethod
    def loaded(cls) -> "StorageRole":
        return cls(RoleKind.LOADED)

    @classmethod
    def available(cls) -> "StorageRole":
        return cls(RoleKind.AVAILABLE)

    @classmethod
    def external(cls, destinationId: str) -> "StorageRole":
        return cls(RoleKind.EXTERNAL, destinationId)

    @property
    def label(self) -> str:
        if self.kind is RoleKind.EXTERNAL:
            return f"external:{self.destinationId}"
        return self.kind.value



# Lower rank wins: Loaded > Available > External
_ROLE_RANK: dict[RoleKind, int] = {
    RoleKind.LOADED: 0,
    RoleKind.AVAILABLE: 1,
    RoleKind.EXTERNAL: 2,
}



def rolePriority(role: StorageRole) -> int:
    return _ROLE_RANK[role.kind]



def roleSortKey(role: StorageRole, destinationOrder: Mapping[str, int] | None = None) -> tuple[int, int, str]:
    """
    Total ordering over roles used for default keeps and representative picks.
    External destinations are ordered by their configured sort order, then id.
    """
    if role.kind is not RoleKind.EXTERNAL:
        return (rolePriority(role), 0, "")
    destId = role.destinationId or ""
    order = (destinationOrder or {}).get(destId, 0)
    return (rolePriority(role), order, destId.casefold())



def preferredRole(roles: Iterable[StorageRole], destinationOrder: Mapping[str, int] | None = None) -> StorageRole | None:
    ordered = sorted(set(roles), key=lambda role: roleSortKey(role, destinationOrder))
    return ordered[0] if ordered else None

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

def _resolve(path: Path | str, baseDir: Path) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = baseDir / candidate
    return candidate.resolve()

def _safeSameFile(first: Path, second: Path) -> bool:
    """
    Robust same-file check that tolerates non-existent paths.
    """
    try:
        if first.exists() and second.exists():
            return first.samefile(second)
    except OSError:
        pass
    return str(first).casefold() == str(second).casefold()

def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")

def isUnder(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except (ValueError, OSError):
        return False

# ------------------------------------------------------------------ #
# Model
# ------------------------------------------------------------------ #

@dataclass(frozen=True)
class ExternalDestination:
    """
    An additional root packages can be moved to and loaded from.
    Only scanned when enabled, valid and present on disk.
    """
    id: str
    name: str
    path: Path | None
    description: str = ""
    enabled: bool = True
    sortOrder: int = 0
    showInMainTable: bool = True
    statusColor: str = DEFAULT_STATUS_COLOR

    def isValid(self) -> bool:
        return bool(self.name.strip()) and self.path is not None

    def pathExists(self) -> bool:
        if self.path is None:
            return False
        try:
            return self.path.is_dir()
        except OSError:
            return False

    @property
    def isScannable(self) -> bool:
        return self.enabled and self.isValid() and self.pathExists()



@dataclass(frozen=True)
class StorageRoots:
    """
    Configured storage roots. Existence of directories is *not* guaranteed;
    consumers treat missing roots as empty.
    """
    loadedRoot: Path | None
    availableRoot: Path | None
    archiveRoot: Path | None = None
    externalDestinations: tuple[ExternalDestination, ...] = field(default_factory=tuple)

    # ----- Construction -----

    @classmethod
    def build(
        cls,
        *,
        baseDir: Path | str = ".",
        loadedRoot: Path | str | None = "AddonPackages",
        availableRoot: Path | str | None = "AllPackages",
        archiveRoot: Path | str | None = ARCHIVE_SEGMENT,
        externalDestinations: Iterable[Mapping[str, object]] = (),
    ) -> "StorageRoots":
        base = Path(baseDir).expanduser().resolve()
        destinations: list[ExternalDestination] = []
        seenIds: set[str] = set()
        for idx, raw in enumerate(externalDestinations):
            name = str(raw.get("name") or "")
            destId = str(raw.get("id") or _slug(name) or f"destination-{idx + 1}")
            if destId.casefold() in seenIds:
                destId = f"{destId}-{idx + 1}"
            seenIds.add(destId.casefold())
            pathText = str(raw.get("path") or "")
            destinations.append(ExternalDestination(
                id=destId,
                name=name,
                path=_resolve(pathText, base) if pathText else None,
                description=str(raw.get("description") or ""),
                enabled=bool(raw.get("enabled", True)),
                sortOrder=int(raw.get("sortOrder", 0) or 0), # type: ignore[call-overload]
                showInMainTable=bool(raw.get("showInMainTable", True)),
                statusColor=str(raw.get("statusColor") or DEFAULT_STATUS_COLOR),
            ))
        return cls(
            loadedRoot=_resolve(loadedRoot, base) if loadedRoot else None,
            availableRoot=_resolve(availableRoot, base) if availableRoot else None,
            archiveRoot=_resolve(archiveRoot, base) if archiveRoot else None,
            externalDestinations=tuple(destinations),
        )

    @classmethod
    def fromSettings(cls, storage) -> "StorageRoots":
        """Build from a packstate.config.settings.StorageSettings model."""
        return cls.build(
            baseDir=storage.baseDir,
            loadedRoot=storage.loadedRoot or None,
            availableRoot=storage.availableRoot or None,
            archiveRoot=storage.archiveRoot or None,
            externalDestinations=[dest.model_dump() for dest in storage.externalDestinations],
        )

    # ----- Queries -----

    def requireConfigured(self) -> None:
        if self.loadedRoot is None and self.availableRoot is None:
            raise NoRootsConfiguredError("neither a loaded nor an available root is set")

    @property
    def oldVersionsDir(self) -> Path | None:
        if self.archiveRoot is None:
            return None
        return self.archiveRoot / OLD_PACKAGES_DIR

    def destination(self, destinationId: str) -> ExternalDestination | None:
        for dest in self.externalDestinations:
            if dest.id.casefold() == destinationId.casefold():
                return dest
        return None

    def destinationOrder(self) -> dict[str, int]:
        return {dest.id: dest.sortOrder for dest in self.externalDestinations}

    def rootFor(self, role: StorageRole) -> Path | None:
        if role.kind is RoleKind.LOADED:
            return self.loadedRoot
        if role.kind is RoleKind.AVAILABLE:
            return self.availableRoot
        dest = self.destination(role.destinationId or "")
        return dest.path if dest is not None else None

    def searchRoots(self) -> list[tuple[StorageRole, Path]]:
        """
        Roots to scan, in role priority order. The same directory configured
        twice is only scanned under its first (highest priority) role.
        """
        out: list[tuple[StorageRole, Path]] = []
        candidates: list[tuple[StorageRole, Path | None]] = [
            (StorageRole.loaded(), self.loadedRoot),
            (StorageRole.available(), self.availableRoot),
        ]
        for dest in sorted(self.externalDestinations, key=lambda item: (item.sortOrder, item.id.casefold())):
            if dest.isScannable:
                candidates.append((StorageRole.external(dest.id), dest.path))
        for role, root in candidates:
            if root is None:
                continue
            if any(_safeSameFile(root, seen) for _role, seen in out):
                continue
            out.append((role, root))
        return out

    def roleOf(self, path: Path) -> StorageRole | None:
        """The role whose root contains `path`, by priority."""
        for role, root in self.searchRoots():
            if isUnder(path, root):
                return role
        return None
