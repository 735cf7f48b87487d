# tests/packstate/content/test_package_status.py
from __future__ import annotations

from packstate.content.package_status import (
    Archived,
    Available,
    External,
    Loaded,
    Missing,
    Outdated,
    Unknown,
    displayFor,
    isLoadable,
    isLocallyAvailable,
    statusFromLabel,
)


def test_localAvailabilityCoversAvailableOutdatedArchived() -> None:
    assert all(isLocallyAvailable(status) for status in (Available(), Outdated(), Archived()))
    assert not any(isLocallyAvailable(status) for status in (Loaded(), Missing(), Unknown(), External("x")))
    assert isLoadable(External("x"))


def test_displayFor_isSeparateFromStatus() -> None:
    assert displayFor(Loaded()).label == "Loaded"
    assert displayFor(Outdated()).color == "#FF9800"
    assert displayFor(External("usb", "USB")).label == "USB"
    assert displayFor(External("usb")).color == "#808080"
    assert displayFor(External("usb"), {"usb": "#00FF00"}).color == "#00FF00"


def test_statusFromLabel_fallsBackToUnknown() -> None:
    assert statusFromLabel("Loaded") == Loaded()
    assert statusFromLabel(" archived ") == Archived()
    assert statusFromLabel("#FF00FF") == Unknown()
    assert statusFromLabel("") == Unknown()
