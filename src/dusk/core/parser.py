"""Turns raw ``du`` output into a usage index.

Standard output lines (``<kilobytes>\\t<path>``) become accessible
entries, permission diagnostics on standard error become restricted
entries.  Both are bucketed by normalized parent directory and merged
into :class:`FolderSnapshot` listings by :meth:`ScanParser.finish`.
"""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Callable, Iterable

from dusk.core.probe import STDERR, STDOUT, ProbeChunk
from dusk.models.usage import FolderSnapshot, UsageEntry
from dusk.settings import DEFAULT_EXCLUDES, DEFAULT_MIN_SIZE_KB
from dusk.utils import is_within, kb_to_bytes, normalize_path

log = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]  # (current_path)

PROGRESS_INTERVAL = 0.1  # seconds

# GNU: "du: cannot read directory '/a/b': Permission denied"
# BSD: "du: /a/b: Permission denied"
_DENIED_RE = re.compile(
    r"du:\s+(?:cannot (?:read directory|access|open) )?"
    r"(?P<quote>['\"‘]?)(?P<path>.+?)(?P=quote)?[’]?"
    r":\s+(?:Permission denied|Operation not permitted)"
)


def parse_du_line(line: str) -> tuple[int, str] | None:
    """Split a ``du`` output line into ``(kilobytes, path)``.

    Returns None for lines that do not start with a non-negative integer
    followed by whitespace and a path.
    """
    parts = line.split(None, 1)
    if len(parts) != 2:
        return None
    size_field, path_field = parts
    if not size_field.isdigit() or not path_field:
        return None
    return int(size_field), path_field


def parse_denied_line(line: str) -> str | None:
    """Extract the offending path from a permission-denied diagnostic."""
    match = _DENIED_RE.search(line)
    if match is None:
        return None
    return match.group("path")


class ScanParser:
    """Incrementally builds a usage index from probe output.

    Feed it :class:`ProbeChunk` items in arrival order and call
    :meth:`finish` once the stream closes.  Chunks need not be whole
    lines; any unterminated tail is held back until the next chunk for
    the same stream or until :meth:`finish`.
    """

    def __init__(
        self,
        root: str,
        *,
        min_size_kb: int = DEFAULT_MIN_SIZE_KB,
        excludes: Iterable[str] = DEFAULT_EXCLUDES,
        on_progress: ProgressCallback | None = None,
        progress_interval: float = PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.root = normalize_path(root)
        self.min_size_kb = min_size_kb
        self._excludes = frozenset(name.lower() for name in excludes)
        self._on_progress = on_progress
        self._progress_interval = progress_interval
        self._clock = clock
        self._last_progress: float | None = None

        self._pending = {STDOUT: "", STDERR: ""}
        self._accessible: dict[str, list[UsageEntry]] = {}
        self._restricted: dict[str, dict[str, UsageEntry]] = {}
        self.record_count = 0
        self.finished = False

    def feed(self, chunk: ProbeChunk) -> None:
        """Consume one piece of raw probe output."""
        data = self._pending[chunk.stream] + chunk.text
        lines = data.split("\n")
        self._pending[chunk.stream] = lines.pop()
        handle = self._handle_stdout if chunk.stream == STDOUT else self._handle_stderr
        for line in lines:
            handle(line)

    def finish(self) -> dict[str, FolderSnapshot]:
        """Flush buffered partial lines and merge the buckets into an index.

        Keys whose listing would be empty are omitted.
        """
        if not self.finished:
            tail_out, tail_err = self._pending[STDOUT], self._pending[STDERR]
            self._pending = {STDOUT: "", STDERR: ""}
            if tail_out:
                self._handle_stdout(tail_out)
            if tail_err:
                self._handle_stderr(tail_err)
            self.finished = True

        index: dict[str, FolderSnapshot] = {}
        for parent in self._accessible.keys() | self._restricted.keys():
            snapshot = FolderSnapshot.build(
                self._accessible.get(parent, ()),
                self._restricted.get(parent, {}).values(),
            )
            if not snapshot.is_empty:
                index[parent] = snapshot
        return index

    def is_excluded(self, path: str) -> bool:
        """Whether *path* lies in a deny-listed directory below the root."""
        if path == self.root:
            return False
        relative = os.path.relpath(path, self.root)
        return any(segment.lower() in self._excludes for segment in relative.split(os.sep))

    def _handle_stdout(self, line: str) -> None:
        record = parse_du_line(line)
        if record is None:
            if line.strip():
                log.debug("Dropping unparsable du line: %r", line)
            return
        kilobytes, raw_path = record
        path = normalize_path(raw_path)
        if not is_within(path, self.root):
            log.debug("Dropping path outside root: %s", path)
            return

        self.record_count += 1
        self._report(path)

        # The root itself has no parent inside the index.
        if path == self.root:
            return
        if kilobytes < self.min_size_kb or self.is_excluded(path):
            return

        parent = os.path.dirname(path)
        self._accessible.setdefault(parent, []).append(
            UsageEntry(path=path, size_bytes=kb_to_bytes(kilobytes))
        )

    def _handle_stderr(self, line: str) -> None:
        raw_path = parse_denied_line(line)
        if raw_path is None:
            if line.strip():
                log.debug("du: %s", line.strip())
            return
        path = normalize_path(raw_path)
        parent = os.path.dirname(path)
        if not is_within(parent, self.root) or self.is_excluded(path):
            return
        self._restricted.setdefault(parent, {}).setdefault(path, UsageEntry.restricted(path))

    def _report(self, path: str) -> None:
        if self._on_progress is None:
            return
        now = self._clock()
        if self._last_progress is not None and now - self._last_progress < self._progress_interval:
            return
        self._last_progress = now
        self._on_progress(path)
