# packstate/content/package_status.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Literal, Union

__all__ = [
    "Loaded",
    "Available",
    "Outdated",
    "Archived",
    "Missing",
    "Unknown",
    "External",
    "PackageStatus",
    "StatusDisplay",
    "isLoadable",
    "isLocallyAvailable",
    "displayFor",
    "statusFromLabel",
]



@dataclass(frozen=True, slots=True)
class Loaded:
    tag: Literal["loaded"] = "loaded"

@dataclass(frozen=True, slots=True)
class Available:
    tag: Literal["available"] = "available"

@dataclass(frozen=True, slots=True)
class Outdated:
    tag: Literal["outdated"] = "outdated"

@dataclass(frozen=True, slots=True)
class Archived:
    tag: Literal["archived"] = "archived"

@dataclass(frozen=True, slots=True)
class Missing:
    tag: Literal["missing"] = "missing"

@dataclass(frozen=True, slots=True)
class Unknown:
    tag: Literal["unknown"] = "unknown"

@dataclass(frozen=True, slots=True)
class External:
    """Package lives in an external destination; loadable like Available."""
    destinationId: str
    destinationName: str = ""
    tag: Literal["external"] = "external"



PackageStatus = Union[Loaded, Available, Outdated, Archived, Missing, Unknown, External]



def isLocallyAvailable(status: PackageStatus) -> bool:
    """Statuses a dependency can be loaded from without an external path."""
    return isinstance(status, (Available, Outdated, Archived))



def isLoadable(status: PackageStatus) -> bool:
    return isLocallyAvailable(status) or isinstance(status, External)



# ------------------------------------------------------------------ #
# Display projection (kept apart from the status type itself)
# ------------------------------------------------------------------ #

@dataclass(frozen=True, slots=True)
class StatusDisplay:
    label: str
    color: str



_DISPLAY: dict[str, StatusDisplay] = {
    "loaded": StatusDisplay("Loaded", "#4CAF50"),
    "available": StatusDisplay("Available", "#2196F3"),
    "outdated": StatusDisplay("Outdated", "#FF9800"),
    "archived": StatusDisplay("Archived", "#9E9E9E"),
    "missing": StatusDisplay("Missing", "#F44336"),
    "unknown": StatusDisplay("Unknown", "#757575"),
}



def displayFor(status: PackageStatus, destinationColors: dict[str, str] | None = None) -> StatusDisplay:
    """
    Label and color for UI consumers. External statuses take the color
    configured on their destination (grey when none is known).
    """
    if isinstance(status, External):
        color = (destinationColors or {}).get(status.destinationId, "#808080")
        return StatusDisplay(status.destinationName or status.destinationId, color)
    return _DISPLAY[status.tag]



_FROM_LABEL: dict[str, type] = {
    "loaded": Loaded,
    "available": Available,
    "outdated": Outdated,
    "archived": Archived,
    "missing": Missing,
}



def statusFromLabel(label: str) -> PackageStatus:
    """Parse a plain status label as stored by older catalogs; anything else is Unknown."""
    factory = _FROM_LABEL.get((label or "").strip().lower())
    return factory() if factory is not None else Unknown()
