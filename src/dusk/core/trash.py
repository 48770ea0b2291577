"""Deletion collaborator: moves paths to the desktop trash."""

from __future__ import annotations

import logging
from typing import Iterable

from send2trash import TrashPermissionError, send2trash

from dusk.errors import DuskError

log = logging.getLogger(__name__)


class DeletionFailed(DuskError):
    """Raised when a batch of paths could not be moved to the trash."""


def move_to_trash(paths: Iterable[str]) -> None:
    """Move every path in *paths* to the trash.

    The batch is all-or-nothing from the caller's point of view: any
    failure raises and the caller must assume nothing was removed.

    Raises:
        DeletionFailed: If any path could not be trashed.
    """
    paths = list(paths)
    try:
        send2trash(paths)
    except (TrashPermissionError, OSError) as exc:
        raise DeletionFailed(f"Could not move {len(paths)} item(s) to trash: {exc}") from exc
    log.info("Moved %d item(s) to trash", len(paths))
