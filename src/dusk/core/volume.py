"""Free/total space probe for the filesystem hosting the scan root."""

from __future__ import annotations

import logging
import re
import subprocess

from dusk.errors import DuskError
from dusk.models.usage import VolumeStats
from dusk.utils import kb_to_bytes

log = logging.getLogger(__name__)

_DF_TIMEOUT = 30

# Filesystem 1024-blocks Used Available Capacity Mounted-on
_DF_ROW_RE = re.compile(r"^(?P<fs>.*?)\s+(?P<total>\d+)\s+(?P<used>\d+)\s+(?P<free>\d+)\s+\d+%\s+(?P<mount>.*)$")


class VolumeProbeFailed(DuskError):
    """Raised when free/total space could not be determined."""


def parse_df_output(output: str) -> VolumeStats:
    """Parse POSIX ``df -P -k`` output into volume stats.

    The row is anchored on its numeric block, so spaces in either the
    filesystem name or the mount point do not shift the columns.
    """
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        raise VolumeProbeFailed(f"Unexpected df output: {output!r}")
    match = _DF_ROW_RE.match(lines[-1].strip())
    if match is None:
        raise VolumeProbeFailed(f"Unexpected df output: {lines[-1]!r}")
    return VolumeStats(
        free_bytes=kb_to_bytes(int(match.group("free"))),
        total_bytes=kb_to_bytes(int(match.group("total"))),
    )


def probe_volume(root: str) -> VolumeStats:
    """Return free and total space of the filesystem containing *root*.

    Raises:
        VolumeProbeFailed: If ``df`` is missing, fails or prints garbage.
    """
    try:
        proc = subprocess.run(
            ["df", "-P", "-k", root],
            capture_output=True,
            text=True,
            timeout=_DF_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise VolumeProbeFailed(f"Could not run df: {exc}") from exc

    if proc.returncode != 0:
        raise VolumeProbeFailed(f"df failed (exit {proc.returncode}): {proc.stderr.strip()}")

    volume = parse_df_output(proc.stdout)
    log.debug("Volume of %s: %d free of %d bytes", root, volume.free_bytes, volume.total_bytes)
    return volume
