"""Scan lifecycle state machine.

The machine is a pure function ``transition(state, event) -> (state, effects)``.
It never performs I/O: cache access, probes, deletion and persistence are
returned as effect objects for :class:`dusk.core.lifecycle.ScanLifecycle`
to execute, which feeds their outcome back as events.

Phases::

    checking_cache -> restoring_cache -> loading_volume -> scanning -> ready.idle
                  \\________________________/                          |    ^
                                                                       v    |
                                          error <- (probe failures)  ready.deleting
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType

from dusk.core.pruner import prune
from dusk.models.usage import UsageIndex, VolumeStats
from dusk.storage import Snapshot
from dusk.utils import normalize_path

log = logging.getLogger(__name__)

EMPTY_INDEX: UsageIndex = MappingProxyType({})


class Phase(Enum):
    CHECKING_CACHE = "checking_cache"
    RESTORING_CACHE = "restoring_cache"
    LOADING_VOLUME = "loading_volume"
    SCANNING = "scanning"
    READY_IDLE = "ready.idle"
    READY_DELETING = "ready.deleting"
    ERROR = "error"

    @property
    def is_ready(self) -> bool:
        return self in (Phase.READY_IDLE, Phase.READY_DELETING)


# ── events ───────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CacheChecked:
    available: bool


@dataclass(frozen=True, slots=True)
class CacheRestored:
    snapshot: Snapshot | None


@dataclass(frozen=True, slots=True)
class VolumeLoaded:
    volume: VolumeStats


@dataclass(frozen=True, slots=True)
class VolumeFailed:
    message: str


@dataclass(frozen=True, slots=True)
class ScanProgress:
    path: str


@dataclass(frozen=True, slots=True)
class ScanSucceeded:
    index: UsageIndex


@dataclass(frozen=True, slots=True)
class ScanAborted:
    message: str


@dataclass(frozen=True, slots=True)
class DeletionSucceeded:
    paths: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DeletionAborted:
    message: str


@dataclass(frozen=True, slots=True)
class Refresh:
    """User request: drop the cache and rescan."""


@dataclass(frozen=True, slots=True)
class Retry:
    """User request: try again after an error."""


@dataclass(frozen=True, slots=True)
class DeleteItems:
    """User request: move *paths* to the trash and prune them."""

    paths: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ItemMissing:
    """A listed path turned out to be gone from disk."""

    path: str


Event = (
    CacheChecked
    | CacheRestored
    | VolumeLoaded
    | VolumeFailed
    | ScanProgress
    | ScanSucceeded
    | ScanAborted
    | DeletionSucceeded
    | DeletionAborted
    | Refresh
    | Retry
    | DeleteItems
    | ItemMissing
)


# ── effects ──────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CheckCache:
    pass


@dataclass(frozen=True, slots=True)
class RestoreCache:
    pass


@dataclass(frozen=True, slots=True)
class ProbeVolume:
    pass


@dataclass(frozen=True, slots=True)
class StartScan:
    pass


@dataclass(frozen=True, slots=True)
class PersistSnapshot:
    index: UsageIndex
    volume: VolumeStats


@dataclass(frozen=True, slots=True)
class InvalidateSnapshot:
    pass


@dataclass(frozen=True, slots=True)
class DeletePaths:
    paths: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Notify:
    title: str
    message: str
    failure: bool = False


Effect = (
    CheckCache
    | RestoreCache
    | ProbeVolume
    | StartScan
    | PersistSnapshot
    | InvalidateSnapshot
    | DeletePaths
    | Notify
)


# ── state ────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class LifecycleState:
    """Everything collaborators may observe about the lifecycle.

    ``index`` is a read-only view; a new one is swapped in on every
    publish and the old one is never mutated.
    """

    root: str
    phase: Phase = Phase.CHECKING_CACHE
    index: UsageIndex = field(default_factory=lambda: EMPTY_INDEX)
    volume: VolumeStats = field(default_factory=VolumeStats)
    active_path: str = ""
    error: str = ""
    deleting: bool = False


def publish(index: UsageIndex) -> UsageIndex:
    """Wrap *index* in a read-only view detached from the caller's dict."""
    return MappingProxyType(dict(index))


def initial(root: str) -> tuple[LifecycleState, tuple[Effect, ...]]:
    """Return the starting state and the effects that kick it off."""
    return LifecycleState(root=normalize_path(root)), (CheckCache(),)


def transition(state: LifecycleState, event: Event) -> tuple[LifecycleState, tuple[Effect, ...]]:
    """Compute the next state and the effects to run for *event*.

    Events the current phase does not accept leave the state unchanged
    and produce no effects.
    """
    match state.phase, event:
        case Phase.CHECKING_CACHE, CacheChecked(available=True):
            return replace(state, phase=Phase.RESTORING_CACHE), (RestoreCache(),)

        case Phase.CHECKING_CACHE, CacheChecked():
            return replace(state, phase=Phase.LOADING_VOLUME), (ProbeVolume(),)

        case Phase.RESTORING_CACHE, CacheRestored(snapshot=None):
            return replace(state, phase=Phase.LOADING_VOLUME), (ProbeVolume(),)

        case Phase.RESTORING_CACHE, CacheRestored(snapshot=snapshot):
            return (
                replace(state, phase=Phase.READY_IDLE, index=publish(snapshot.index), volume=snapshot.volume),
                (),
            )

        case Phase.LOADING_VOLUME, VolumeLoaded(volume=volume):
            return replace(state, phase=Phase.SCANNING, volume=volume, active_path=""), (StartScan(),)

        case Phase.LOADING_VOLUME, VolumeFailed(message=message):
            return replace(state, phase=Phase.ERROR, error=message), ()

        case Phase.SCANNING, ScanProgress(path=path):
            return replace(state, active_path=path), ()

        case Phase.SCANNING, ScanSucceeded(index=index):
            published = publish(index)
            return (
                replace(state, phase=Phase.READY_IDLE, index=published, active_path=""),
                (PersistSnapshot(index=published, volume=state.volume),),
            )

        case Phase.SCANNING, ScanAborted(message=message):
            return replace(state, phase=Phase.ERROR, error=f"Scan failed: {message}", active_path=""), ()

        case Phase.READY_IDLE, Refresh():
            return (
                replace(state, phase=Phase.LOADING_VOLUME, index=EMPTY_INDEX),
                (InvalidateSnapshot(), ProbeVolume()),
            )

        case Phase.READY_IDLE, DeleteItems(paths=paths) if paths:
            return replace(state, phase=Phase.READY_DELETING, deleting=True), (DeletePaths(paths=paths),)

        case Phase.READY_DELETING, DeletionSucceeded(paths=paths):
            pruned, effects = _apply_prune(state, paths)
            notice = Notify(title="Moved to Trash", message="Space reclaimed")
            return replace(pruned, phase=Phase.READY_IDLE, deleting=False), (*effects, notice)

        case Phase.READY_DELETING, DeletionAborted(message=message):
            notice = Notify(title="Error", message=message, failure=True)
            return replace(state, phase=Phase.READY_IDLE, deleting=False), (notice,)

        case (Phase.READY_IDLE | Phase.READY_DELETING), ItemMissing(path=path):
            return _apply_prune(state, (path,))

        case Phase.ERROR, Retry():
            return replace(state, phase=Phase.LOADING_VOLUME, error=""), (ProbeVolume(),)

    log.debug("Ignoring %s in phase %s", type(event).__name__, state.phase.value)
    return state, ()


def _apply_prune(state: LifecycleState, paths: tuple[str, ...]) -> tuple[LifecycleState, tuple[Effect, ...]]:
    """Prune *paths* from the published index and schedule a persist."""
    result = prune(state.index, paths, state.root)
    if result.index is state.index:
        return state, ()
    index = publish(result.index)
    volume = state.volume.with_freed(result.freed_bytes)
    return replace(state, index=index, volume=volume), (PersistSnapshot(index=index, volume=volume),)
