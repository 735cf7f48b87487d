# packstate/content/duplicate_analyzer.py
from __future__ import annotations
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TypeVar

from packstate.content.instance_locator import FileInstance, locate, locateAll
from packstate.content.package_identity import PackageIdentity, baseNameOf
from packstate.content.storage_roots import RoleKind, StorageRole, StorageRoots, preferredRole, roleSortKey

logger = logging.getLogger(__name__)

__all__ = [
    "DuplicateGroup",
    "DuplicateAnalyzer",
    "isDuplicateSet",
    "analyze",
    "pickRepresentative",
]

T = TypeVar("T")



def isDuplicateSet(instances: Iterable[FileInstance]) -> bool:
    """
    Instances sharing one filename are duplicates iff there are at least two
    of them and they span more than one role, or one role holds several.
    """
    perRole: dict[StorageRole, int] = {}
    total = 0
    for inst in instances:
        perRole[inst.role] = perRole.get(inst.role, 0) + 1
        total += 1
    if total < 2:
        return False
    return len(perRole) > 1 or any(count > 1 for count in perRole.values())



@dataclass(frozen=True)
class DuplicateGroup:
    """All instances of one exact filename (one package version) across roles."""
    baseName: str
    filename: str
    instances: tuple[FileInstance, ...]
    defaultKeep: StorageRole

    @property
    def key(self) -> tuple[str, str]:
        return (self.baseName.casefold(), self.filename.casefold())

    @property
    def roles(self) -> list[StorageRole]:
        seen: list[StorageRole] = []
        for inst in self.instances:
            if inst.role not in seen:
                seen.append(inst.role)
        return seen

    @property
    def locationCount(self) -> int:
        return len(self.roles)

    @property
    def maxFileSize(self) -> int:
        return max((inst.size for inst in self.instances), default=0)

    def candidatesIn(self, role: StorageRole) -> list[FileInstance]:
        return [inst for inst in self.instances if inst.role == role]

    def needsSelection(self, role: StorageRole) -> bool:
        return len(self.candidatesIn(role)) > 1



def _groupBaseName(filename: str) -> str:
    ident = PackageIdentity.fromFilename(filename)
    if ident is not None:
        return ident.baseName
    stem = filename[:-4] if filename.lower().endswith(".var") else filename
    return baseNameOf(stem)



def analyze(
    instances: Iterable[FileInstance],
    *,
    destinationOrder: Mapping[str, int] | None = None,
) -> list[DuplicateGroup]:
    """
    Group instances of one base name by filename (case-insensitive) and keep
    only duplicate groups. Default keep is the highest priority role present
    (Loaded > Available > External).

    Metadata status is never consulted here: only what is on disk counts.
    """
    byFilename: dict[str, list[FileInstance]] = {}
    for inst in instances:
        byFilename.setdefault(inst.filename.casefold(), []).append(inst)

    groups: list[DuplicateGroup] = []
    for members in byFilename.values():
        if not isDuplicateSet(members):
            continue
        members.sort(key=lambda inst: (roleSortKey(inst.role, destinationOrder), str(inst.path).casefold()))
        keep = preferredRole((inst.role for inst in members), destinationOrder)
        assert keep is not None
        filename = members[0].filename
        groups.append(DuplicateGroup(
            baseName=_groupBaseName(filename),
            filename=filename,
            instances=tuple(members),
            defaultKeep=keep,
        ))
    groups.sort(key=lambda group: group.filename.casefold())
    return groups



def pickRepresentative(records: Iterable[T], roleOf: Callable[[T], StorageRole | None]) -> T | None:
    """
    Representative record for display: first Loaded, else first Available,
    else the first record at all.
    """
    items = list(records)
    for kind in (RoleKind.LOADED, RoleKind.AVAILABLE):
        for item in items:
            role = roleOf(item)
            if role is not None and role.kind is kind:
                return item
    return items[0] if items else None



@dataclass
class DuplicateAnalyzer:
    roots: StorageRoots

    def analyzeBase(self, baseName: str) -> list[DuplicateGroup]:
        return analyze(locate(baseName, self.roots), destinationOrder=self.roots.destinationOrder())

    def analyzeAll(self) -> list[DuplicateGroup]:
        """Scan every root once and analyze each base name found."""
        order = self.roots.destinationOrder()
        groups: list[DuplicateGroup] = []
        for _baseName, instances in sorted(locateAll(self.roots).items(), key=lambda item: item[0].casefold()):
            groups.extend(analyze(instances, destinationOrder=order))
        logger.debug("Duplicate scan found %d group(s)", len(groups))
        return groups
