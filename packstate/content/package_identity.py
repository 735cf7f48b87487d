# packstate/content/package_identity.py
from __future__ import annotations
import re
from dataclasses import dataclass
from enum import Enum
from collections.abc import Iterable
from typing import Literal

__all__ = [
    "VAR_EXTENSION",
    "LATEST",
    "PackageIdentity",
    "VersionKind",
    "DependencyReference",
    "baseNameOf",
    "normalizeDependencyName",
    "isVarPath",
    "sameName",
]

VAR_EXTENSION = ".var"
LATEST = "latest"

# <creator>.<packageName>.<version>.var ; packageName may itself contain dots
_VAR_FILENAME_RE = re.compile(r"^([^.]+)\.(.+?)\.(\d+)\.var$", re.IGNORECASE)
_MIN_VERSION_RE = re.compile(r"\.min(\d+)$", re.IGNORECASE)
_EXACT_VERSION_RE = re.compile(r"\.(\d+)$")



def sameName(first: str, second: str) -> bool:
    """Case-insensitive comparison used for every package and path identity check."""
    return first.casefold() == second.casefold()



def isVarPath(path: str | object) -> bool:
    return str(path).lower().endswith(VAR_EXTENSION)



def _stripVarSuffix(name: str) -> str:
    if name.lower().endswith(VAR_EXTENSION):
        return name[: -len(VAR_EXTENSION)]
    return name



def baseNameOf(identifier: str) -> str:
    """
    Strip the last dot-separated segment of a dotted identifier.

    Only strips when a non-empty trailing segment exists after the split
    point and the prefix before it is non-empty:
        "A.Foo.3"  -> "A.Foo"
        "A.Foo."   -> "A.Foo."   (no trailing segment)
        "Foo"      -> "Foo"      (segment would be the whole string)
    """
    idx = identifier.rfind(".")
    if idx <= 0 or idx >= len(identifier) - 1:
        return identifier
    return identifier[:idx]



def normalizeDependencyName(raw: str) -> str:
    """
    Reduce a declared dependency reference to its base name.

        "Creator.Pack.var"    -> "Creator.Pack"
        "Creator.Pack.7"      -> "Creator.Pack"
        "Creator.Pack.latest" -> "Creator.Pack"
        "Creator.Pack.Name.3" -> "Creator.Pack.Name"

    Only a final integer or `latest` segment is stripped.
    """
    name = _stripVarSuffix(str(raw).strip())
    stripped = baseNameOf(name)
    if stripped == name:
        return name
    lastSegment = name[len(stripped) + 1:]
    if lastSegment.isdigit() or lastSegment.lower() == LATEST:
        return stripped
    return name



@dataclass(frozen=True, slots=True)
class PackageIdentity:
    creatorName: str
    packageName: str
    version: int | Literal["latest"]

    @property
    def baseName(self) -> str:
        return f"{self.creatorName}.{self.packageName}"

    @property
    def fullName(self) -> str:
        return f"{self.baseName}.{self.version}"

    @property
    def filename(self) -> str:
        if self.version == LATEST:
            raise ValueError(f"'{self.fullName}' does not name a concrete file")
        return f"{self.fullName}{VAR_EXTENSION}"

    @property
    def numericVersion(self) -> int:
        """Concrete version, or 0 for `latest`."""
        return self.version if isinstance(self.version, int) else 0

    @classmethod
    def fromFilename(cls, filename: str) -> "PackageIdentity | None":
        """
        Parse `<creator>.<package>.<version>.var`. Returns None for anything
        that is not a versioned package file.
        """
        match = _VAR_FILENAME_RE.match(filename)
        if match is None:
            return None
        version = int(match.group(3))
        if version <= 0:
            return None
        return cls(creatorName=match.group(1), packageName=match.group(2), version=version)

    @classmethod
    def parse(cls, dotted: str) -> "PackageIdentity | None":
        """Parse `<creator>.<package>.<version|latest>` with an optional .var suffix."""
        name = _stripVarSuffix(str(dotted).strip())
        parts = name.split(".")
        if len(parts) < 3 or not parts[0] or not all(parts[1:-1]):
            return None
        versionToken = parts[-1]
        version: int | Literal["latest"]
        if versionToken.isdigit() and int(versionToken) > 0:
            version = int(versionToken)
        elif versionToken.lower() == LATEST:
            version = LATEST
        else:
            return None
        return cls(creatorName=parts[0], packageName=".".join(parts[1:-1]), version=version)



class VersionKind(Enum):
    EXACT = "exact"
    LATEST = "latest"
    MINIMUM = "minimum"



@dataclass(frozen=True, slots=True)
class DependencyReference:
    """
    A parsed package reference as written in dependency lists or passed to
    load/unload:

        "Creator.Package.5"      → EXACT 5
        "Creator.Package.latest" → LATEST
        "Creator.Package.min32"  → MINIMUM 32
        "Creator.Package"        → LATEST (no version suffix)
    """
    raw: str
    baseName: str
    kind: VersionKind
    versionNumber: int | None = None

    @classmethod
    def parse(cls, raw: str) -> "DependencyReference":
        if not raw:
            return cls(raw=raw or "", baseName="", kind=VersionKind.EXACT)

        name = _stripVarSuffix(raw.strip())

        if name.lower().endswith("." + LATEST):
            return cls(raw=raw, baseName=name[: -len(LATEST) - 1], kind=VersionKind.LATEST)

        minMatch = _MIN_VERSION_RE.search(name)
        if minMatch is not None:
            return cls(
                raw=raw,
                baseName=name[: minMatch.start()],
                kind=VersionKind.MINIMUM,
                versionNumber=int(minMatch.group(1)),
            )

        exactMatch = _EXACT_VERSION_RE.search(name)
        if exactMatch is not None:
            return cls(
                raw=raw,
                baseName=name[: exactMatch.start()],
                kind=VersionKind.EXACT,
                versionNumber=int(exactMatch.group(1)),
            )

        return cls(raw=raw, baseName=name, kind=VersionKind.LATEST)

    def isSatisfiedBy(self, version: int) -> bool:
        if self.kind is VersionKind.MINIMUM:
            return version >= (self.versionNumber or 0)
        if self.kind is VersionKind.EXACT:
            return version == (self.versionNumber or 0)
        return True

    def findBestMatch(self, versions: Iterable[int], *, preferLatest: bool = True) -> int | None:
        """
        Pick a version out of `versions`:
          • LATEST  → highest
          • MINIMUM → highest (or lowest with preferLatest=False) at or above
                      the minimum; highest overall when none qualifies
          • EXACT   → that version when present, else highest
        """
        ordered = sorted(set(versions))
        if not ordered:
            return None
        if self.kind is VersionKind.MINIMUM:
            matching = [ver for ver in ordered if ver >= (self.versionNumber or 0)]
            if matching:
                return matching[-1] if preferLatest else matching[0]
            return ordered[-1]
        if self.kind is VersionKind.EXACT and self.versionNumber in ordered:
            return self.versionNumber
        return ordered[-1]
