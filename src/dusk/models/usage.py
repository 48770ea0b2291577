"""Usage index dataclasses."""

from __future__ import annotations

import heapq
import os
from dataclasses import dataclass, replace
from typing import Iterable, Mapping

from dusk.utils import bytes_to_human

RESTRICTED_LABEL = "Access Denied"


@dataclass(frozen=True, slots=True)
class UsageEntry:
    """Single file or directory measured by the size probe.

    Restricted entries (``denied=True``) could not be measured and
    always carry a size of zero.
    """

    path: str
    size_bytes: int
    name: str = ""
    denied: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", os.path.basename(self.path))
        if self.size_bytes < 0:
            raise ValueError(f"Negative size for {self.path}: {self.size_bytes}")

    @classmethod
    def restricted(cls, path: str) -> UsageEntry:
        return cls(path=path, size_bytes=0, denied=True)

    @property
    def size_label(self) -> str:
        if self.denied:
            return RESTRICTED_LABEL
        return bytes_to_human(self.size_bytes)

    def shrink(self, removed_bytes: int) -> UsageEntry:
        """Return a copy with *removed_bytes* subtracted, clamped at zero."""
        return replace(self, size_bytes=max(0, self.size_bytes - removed_bytes))


@dataclass(frozen=True, slots=True)
class FolderSnapshot:
    """Accessible and restricted listing for one parent directory."""

    accessible: tuple[UsageEntry, ...] = ()
    restricted: tuple[UsageEntry, ...] = ()

    @classmethod
    def build(cls, accessible: Iterable[UsageEntry], restricted: Iterable[UsageEntry] = ()) -> FolderSnapshot:
        """Build a snapshot with *accessible* sorted descending by size."""
        ordered = sorted(accessible, key=lambda e: e.size_bytes, reverse=True)
        return cls(accessible=tuple(ordered), restricted=tuple(restricted))

    @property
    def is_empty(self) -> bool:
        return not self.accessible and not self.restricted

    @property
    def total_bytes(self) -> int:
        return sum(e.size_bytes for e in self.accessible)


# Parent directory path -> listing of its children.
UsageIndex = Mapping[str, FolderSnapshot]


@dataclass(frozen=True, slots=True)
class VolumeStats:
    """Free and total space of the filesystem hosting the scan root."""

    free_bytes: int = 0
    total_bytes: int = 0
    usage_label: str = ""

    def __post_init__(self) -> None:
        if not self.usage_label:
            object.__setattr__(self, "usage_label", usage_percent_label(self.free_bytes, self.total_bytes))

    @property
    def used_bytes(self) -> int:
        return max(0, self.total_bytes - self.free_bytes)

    def with_freed(self, freed_bytes: int) -> VolumeStats:
        """Return stats after *freed_bytes* were released on the volume."""
        free = self.free_bytes + freed_bytes
        if self.total_bytes > 0:
            free = min(free, self.total_bytes)
        return VolumeStats(free_bytes=free, total_bytes=self.total_bytes)


def usage_percent_label(free_bytes: int, total_bytes: int) -> str:
    if total_bytes <= 0:
        return "0%"
    percent = round(100 * (total_bytes - free_bytes) / total_bytes)
    return f"{percent}%"


def largest_entries(index: UsageIndex, limit: int = 1000) -> list[UsageEntry]:
    """Return the *limit* largest accessible entries across the whole index."""
    entries = (e for snapshot in index.values() for e in snapshot.accessible)
    return heapq.nlargest(limit, entries, key=lambda e: e.size_bytes)
