"""Shared test fixtures."""

from __future__ import annotations

import pytest

from dusk.models.usage import FolderSnapshot, UsageEntry
from dusk.settings import Settings
from dusk.storage import SnapshotStore

ROOT = "/home/user"


@pytest.fixture(autouse=True)
def isolate_xdg(tmp_path, monkeypatch):
    """Redirect config and cache directories to a temp directory."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setattr(Settings, "_instance", None)


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(ROOT, tmp_path / "snapshots")


def _entry(path: str, kb: int) -> UsageEntry:
    return UsageEntry(path=path, size_bytes=kb * 1024)


@pytest.fixture
def sample_index():
    """Three-level index below ROOT.

    /home/user
      Projects (30000 KB)
        app (20000 KB)
          build.bin (12000 KB)
          data.db   (5000 KB)
        notes.txt (3000 KB)
      Videos (8000 KB)
        clip.mp4 (8000 KB)
      Private (restricted)
    """
    return {
        ROOT: FolderSnapshot.build(
            [_entry(f"{ROOT}/Projects", 30000), _entry(f"{ROOT}/Videos", 8000)],
            [UsageEntry.restricted(f"{ROOT}/Private")],
        ),
        f"{ROOT}/Projects": FolderSnapshot.build(
            [_entry(f"{ROOT}/Projects/app", 20000), _entry(f"{ROOT}/Projects/notes.txt", 3000)]
        ),
        f"{ROOT}/Projects/app": FolderSnapshot.build(
            [_entry(f"{ROOT}/Projects/app/build.bin", 12000), _entry(f"{ROOT}/Projects/app/data.db", 5000)]
        ),
        f"{ROOT}/Videos": FolderSnapshot.build([_entry(f"{ROOT}/Videos/clip.mp4", 8000)]),
    }
