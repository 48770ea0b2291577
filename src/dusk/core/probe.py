"""Recursive disk usage probe backed by ``du``.

The probe runs ``du`` once for the scan root and streams both output
pipes through a bounded channel.  Each item on the channel is a
:class:`ProbeChunk` holding one raw line (the last one may be
unterminated); the channel ends with a single :class:`StreamClosed`
carrying the exit status.
"""

from __future__ import annotations

import logging
import os
import queue
import subprocess
import threading
from dataclasses import dataclass
from typing import Iterator

from dusk.errors import DuskError

log = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"

# du exits with 1 when some subtrees could not be read.
PARTIAL_FAILURE_CODE = 1

_CHANNEL_SIZE = 4096


class ScanFailed(DuskError):
    """Raised when the probe produced no usable output."""


@dataclass(frozen=True, slots=True)
class ProbeChunk:
    """One raw line read from a probe pipe."""

    stream: str
    text: str


@dataclass(frozen=True, slots=True)
class StreamClosed:
    """Terminal channel message: both pipes drained and the process reaped."""

    returncode: int


ProbeMessage = ProbeChunk | StreamClosed


def du_command(root: str) -> list[str]:
    """Build the ``du`` invocation for *root*.

    ``-a`` lists files as well as directories, ``-k`` reports kilobytes,
    ``-P`` never follows symlinks and ``-x`` stays on one filesystem.
    """
    return ["du", "-a", "-k", "-P", "-x", root]


class SizeProbe:
    """Runs ``du`` for one root and yields its output as a message stream."""

    def __init__(self, root: str, command: list[str] | None = None) -> None:
        self.root = root
        self.command = command or du_command(root)

    def stream(self) -> Iterator[ProbeMessage]:
        """Start the process and yield messages until :class:`StreamClosed`.

        Raises:
            ScanFailed: If the process cannot be started.
        """
        try:
            proc = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise ScanFailed(f"Could not start {self.command[0]}: {exc}") from exc

        log.debug("Started %s (pid %d)", " ".join(self.command), proc.pid)
        channel: queue.Queue[ProbeMessage | None] = queue.Queue(maxsize=_CHANNEL_SIZE)

        readers = [
            threading.Thread(target=_pump, args=(pipe, stream, channel), name=f"dusk-probe-{stream}", daemon=True)
            for stream, pipe in ((STDOUT, proc.stdout), (STDERR, proc.stderr))
        ]
        for reader in readers:
            reader.start()

        open_pipes = len(readers)
        try:
            while open_pipes:
                message = channel.get()
                if message is None:
                    open_pipes -= 1
                    continue
                yield message
        finally:
            if open_pipes:
                # Consumer stopped early: stop the child and unblock the readers.
                log.debug("Abandoning %s (pid %d)", self.command[0], proc.pid)
                if proc.poll() is None:
                    proc.kill()
                while open_pipes:
                    if channel.get() is None:
                        open_pipes -= 1
            for reader in readers:
                reader.join()
            returncode = proc.wait()

        log.debug("%s exited with %d", self.command[0], returncode)
        yield StreamClosed(returncode=returncode)


def _pump(pipe, stream: str, channel: queue.Queue) -> None:
    """Copy lines from *pipe* into *channel*, then signal end of pipe."""
    try:
        for raw in iter(pipe.readline, b""):
            channel.put(ProbeChunk(stream=stream, text=os.fsdecode(raw)))
    finally:
        pipe.close()
        channel.put(None)


def check_exit(returncode: int, accessible_count: int) -> None:
    """Decide whether a finished probe run counts as a successful scan.

    Raises:
        ScanFailed: On a total-failure exit code, or a partial failure
            that produced no accessible records.
    """
    if returncode == 0:
        return
    if returncode == PARTIAL_FAILURE_CODE and accessible_count > 0:
        log.info("du reported unreadable subtrees, keeping %d records", accessible_count)
        return
    if returncode == PARTIAL_FAILURE_CODE:
        raise ScanFailed("du produced no output")
    raise ScanFailed(f"Scan failed with code {returncode}")
