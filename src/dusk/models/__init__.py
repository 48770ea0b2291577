"""dusk data models."""

from dusk.models.usage import (
    RESTRICTED_LABEL,
    FolderSnapshot,
    UsageEntry,
    UsageIndex,
    VolumeStats,
    largest_entries,
    usage_percent_label,
)

__all__ = [
    "RESTRICTED_LABEL",
    "FolderSnapshot",
    "UsageEntry",
    "UsageIndex",
    "VolumeStats",
    "largest_entries",
    "usage_percent_label",
]
