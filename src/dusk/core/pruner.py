"""Probe-free index update after paths were deleted."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Iterator

from dusk.models.usage import FolderSnapshot, UsageIndex
from dusk.utils import is_within, normalize_path

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PruneResult:
    """Pruned index plus the number of bytes the deletion released."""

    index: UsageIndex
    freed_bytes: int


def ancestors(path: str, root: str) -> Iterator[str]:
    """Yield the parent directories of *path*, nearest first, up to *root*.

    Stops after yielding *root* or as soon as the walk leaves it.
    """
    current = os.path.dirname(path)
    while is_within(current, root):
        yield current
        parent = os.path.dirname(current)
        if current == root or parent == current:
            return
        current = parent


def _inside_deleted(path: str, deleted: set[str], root: str) -> bool:
    """Whether *path* or any of its ancestors below *root* was deleted."""
    if path in deleted:
        return True
    return any(ancestor in deleted for ancestor in ancestors(path, root))


def prune(index: UsageIndex, deleted_paths: Iterable[str], root: str) -> PruneResult:
    """Remove *deleted_paths* from *index* and shrink their ancestors.

    Every accessible entry named in *deleted_paths* contributes its size
    to the freed total and to each ancestor directory up to *root*.  A
    deleted path nested inside another deleted directory is already
    accounted for by that directory's size and contributes nothing.
    Listings of deleted directories (and of anything below them) are
    dropped, surviving ancestor entries are shrunk (never below zero),
    and listings left empty are removed.

    The input index is never modified.
    """
    deleted = {normalize_path(p) for p in deleted_paths}
    if not deleted:
        return PruneResult(index=index, freed_bytes=0)
    root = normalize_path(root)

    counted = {p for p in deleted if not any(a in deleted for a in ancestors(p, root))}

    freed = 0
    adjustments: dict[str, int] = {}
    for snapshot in index.values():
        for entry in snapshot.accessible:
            if entry.path not in counted:
                continue
            freed += entry.size_bytes
            for ancestor in ancestors(entry.path, root):
                adjustments[ancestor] = adjustments.get(ancestor, 0) + entry.size_bytes

    pruned: dict[str, FolderSnapshot] = {}
    for parent, snapshot in index.items():
        if _inside_deleted(parent, deleted, root):
            continue

        touched = False
        accessible = []
        for entry in snapshot.accessible:
            if entry.path in deleted:
                touched = True
            elif entry.path in adjustments:
                accessible.append(entry.shrink(adjustments[entry.path]))
                touched = True
            else:
                accessible.append(entry)
        restricted = [e for e in snapshot.restricted if e.path not in deleted]
        touched = touched or len(restricted) != len(snapshot.restricted)

        if not touched:
            pruned[parent] = snapshot
            continue
        rebuilt = FolderSnapshot.build(accessible, restricted)
        if not rebuilt.is_empty:
            pruned[parent] = rebuilt

    log.info("Pruned %d deleted paths, %d bytes freed", len(deleted), freed)
    return PruneResult(index=pruned, freed_bytes=freed)
