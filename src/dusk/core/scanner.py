"""Full scan: run the size probe and parse its output into an index."""

from __future__ import annotations

import logging
import time

from dusk.core.parser import ProgressCallback, ScanParser
from dusk.core.probe import ProbeChunk, SizeProbe, StreamClosed, check_exit
from dusk.models.usage import FolderSnapshot
from dusk.settings import Settings
from dusk.utils import format_elapsed, normalize_path

log = logging.getLogger(__name__)


def build_index(
    root: str,
    on_progress: ProgressCallback | None = None,
    *,
    settings: Settings | None = None,
    probe: SizeProbe | None = None,
) -> dict[str, FolderSnapshot]:
    """Scan *root* from scratch and return the finished usage index.

    Args:
        root: Directory to index.
        on_progress: Optional throttled callback receiving the path
            currently being measured.
        settings: Source of the size floor and exclusion list.
        probe: Probe to read from; defaults to ``du`` on *root*.

    Raises:
        ScanFailed: If the probe could not run or produced nothing usable.
    """
    settings = settings or Settings.instance()
    root = normalize_path(root)
    parser = ScanParser(
        root,
        min_size_kb=settings.min_size_kb,
        excludes=settings.excludes,
        on_progress=on_progress,
    )
    probe = probe or SizeProbe(root)

    log.info("Scanning %s", root)
    started = time.monotonic()
    index: dict[str, FolderSnapshot] = {}

    for message in probe.stream():
        match message:
            case ProbeChunk():
                parser.feed(message)
            case StreamClosed(returncode=returncode):
                index = parser.finish()
                check_exit(returncode, parser.record_count)

    log.info(
        "Indexed %d folders under %s in %s",
        len(index),
        root,
        format_elapsed(time.monotonic() - started),
    )
    return index
