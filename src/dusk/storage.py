"""Compressed snapshot storage for the usage index.

A snapshot is two files in the cache directory:

* ``snapshot.json.gz``: the gzip-compressed JSON payload
  ``{"version", "root", "fs_index", "volume"}``.
* ``snapshot.json``: a small presence marker ``{"version", "root"}``
  written after the payload, so availability can be answered without
  touching the (potentially large) payload.

A snapshot written by another schema version or for another root is
treated exactly like a missing one.
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import threading
import zlib
from dataclasses import dataclass
from pathlib import Path

from dusk.errors import DuskError
from dusk.models.usage import FolderSnapshot, UsageEntry, UsageIndex, VolumeStats
from dusk.utils import normalize_path

log = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

PAYLOAD_FILE = "snapshot.json.gz"
MARKER_FILE = "snapshot.json"


class CacheCorrupt(DuskError):
    """Raised when a persisted snapshot cannot be decoded."""


@dataclass(frozen=True, slots=True)
class Snapshot:
    """A usage index together with the volume stats it was taken with."""

    index: UsageIndex
    volume: VolumeStats


def encode_snapshot(root: str, index: UsageIndex, volume: VolumeStats) -> bytes:
    """Serialize a snapshot to compressed JSON bytes."""
    doc = {
        "version": SNAPSHOT_VERSION,
        "root": root,
        "fs_index": {
            parent: {
                "accessible": [
                    {"path": e.path, "size_bytes": e.size_bytes, "name": e.name} for e in snapshot.accessible
                ],
                "restricted": [e.path for e in snapshot.restricted],
            }
            for parent, snapshot in index.items()
        },
        "volume": {
            "free_bytes": volume.free_bytes,
            "total_bytes": volume.total_bytes,
            "usage_label": volume.usage_label,
        },
    }
    return gzip.compress(json.dumps(doc, separators=(",", ":")).encode("ascii"))


def decode_snapshot(data: bytes, root: str) -> Snapshot:
    """Inverse of :func:`encode_snapshot`.

    Raises:
        CacheCorrupt: If the payload is damaged, has another schema
            version or belongs to another root.
    """
    try:
        doc = json.loads(gzip.decompress(data))
        version = doc["version"]
        if version != SNAPSHOT_VERSION:
            raise CacheCorrupt(f"Snapshot version {version!r}, expected {SNAPSHOT_VERSION}")
        if doc["root"] != root:
            raise CacheCorrupt(f"Snapshot belongs to {doc['root']!r}, not {root!r}")

        index: dict[str, FolderSnapshot] = {}
        for parent, raw in doc["fs_index"].items():
            index[parent] = FolderSnapshot(
                accessible=tuple(
                    UsageEntry(path=e["path"], size_bytes=int(e["size_bytes"]), name=e["name"])
                    for e in raw["accessible"]
                ),
                restricted=tuple(UsageEntry.restricted(p) for p in raw["restricted"]),
            )

        raw_volume = doc["volume"]
        volume = VolumeStats(
            free_bytes=int(raw_volume["free_bytes"]),
            total_bytes=int(raw_volume["total_bytes"]),
            usage_label=raw_volume["usage_label"],
        )
    except CacheCorrupt:
        raise
    except (OSError, EOFError, zlib.error, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise CacheCorrupt(f"Unreadable snapshot: {exc}") from exc
    return Snapshot(index=index, volume=volume)


class SnapshotStore:
    """Durable cache of one root's usage index.

    None of the methods raise on storage errors: failures are logged and
    degrade to "no snapshot".
    """

    def __init__(self, root: str, directory: Path) -> None:
        self.root = normalize_path(root)
        self.directory = Path(directory)
        self._lock = threading.Lock()

    @property
    def payload_path(self) -> Path:
        return self.directory / PAYLOAD_FILE

    @property
    def marker_path(self) -> Path:
        return self.directory / MARKER_FILE

    def is_available(self) -> bool:
        """Check the presence marker without reading the payload."""
        try:
            marker = json.loads(self.marker_path.read_text(encoding="utf-8"))
            return marker["version"] == SNAPSHOT_VERSION and marker["root"] == self.root
        except FileNotFoundError:
            return False
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("Unreadable snapshot marker %s: %s", self.marker_path, e)
            return False

    def persist(self, index: UsageIndex, volume: VolumeStats) -> None:
        """Write the snapshot, replacing any previous one."""
        with self._lock:
            try:
                data = encode_snapshot(self.root, index, volume)
                self.directory.mkdir(parents=True, exist_ok=True)
                _write_atomic(self.payload_path, data)
                marker = {"version": SNAPSHOT_VERSION, "root": self.root}
                _write_atomic(self.marker_path, json.dumps(marker).encode("ascii"))
            except (OSError, ValueError):
                log.exception("Failed to persist snapshot to %s", self.directory)
                return
        log.debug("Persisted snapshot: %d folders, %d bytes", len(index), len(data))

    def invalidate(self) -> None:
        """Remove the snapshot. Safe to call when nothing is stored."""
        with self._lock:
            self._remove()

    def hydrate(self) -> Snapshot | None:
        """Load the snapshot, or None if there is no usable one.

        A damaged or incompatible snapshot is removed so that later
        :meth:`is_available` calls report False.
        """
        with self._lock:
            if not self.marker_path.exists():
                return None
            try:
                snapshot = decode_snapshot(self.payload_path.read_bytes(), self.root)
            except (CacheCorrupt, OSError) as e:
                log.warning("Discarding snapshot in %s: %s", self.directory, e)
                self._remove()
                return None
        log.debug("Hydrated snapshot: %d folders", len(snapshot.index))
        return snapshot

    def _remove(self) -> None:
        for path in (self.marker_path, self.payload_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                log.warning("Could not remove %s: %s", path, e)


def _write_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)

