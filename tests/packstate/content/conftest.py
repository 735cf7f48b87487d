# tests/packstate/content/conftest.py
from __future__ import annotations
import json
import os
import zipfile
from pathlib import Path
from typing import Any

import pytest

from packstate.content.storage_roots import StorageRoots



@pytest.fixture
def roots(tmp_path: Path) -> StorageRoots:
    """Loaded, available and archive roots under tmp_path, all present."""
    for name in ("AddonPackages", "AllPackages", "ArchivedPackages"):
        (tmp_path / name).mkdir()
    return StorageRoots.build(baseDir=tmp_path)



@pytest.fixture
def makeVar():
    """
    Write a package file. With `meta` the file is a real zip archive carrying
    meta.json; otherwise it is a few plain bytes. `mtime` pins the timestamps.
    """
    def _make(path: Path, *, meta: dict[str, Any] | None = None, size: int = 8, mtime: float | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        if meta is not None:
            with zipfile.ZipFile(path, "w") as archive:
                archive.writestr("meta.json", json.dumps(meta))
        else:
            path.write_bytes(b"v" * size)
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path
    return _make



class FakeSleep:
    """Records requested delays instead of sleeping."""
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)



@pytest.fixture
def fakeSleep() -> FakeSleep:
    return FakeSleep()
