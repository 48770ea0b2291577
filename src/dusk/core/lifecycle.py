"""Event loop driving the scan lifecycle state machine.

One :class:`ScanLifecycle` owns one root.  Events (probe results, scan
progress, user requests) are queued and processed in order on a single
loop thread; each transition's effects run on worker threads and report
back by queueing further events.  Snapshot writes go through their own
single-thread executor so they are applied in the order they were
scheduled.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable

from dusk.core.machine import (
    CacheChecked,
    CacheRestored,
    CheckCache,
    DeleteItems,
    DeletePaths,
    DeletionAborted,
    DeletionSucceeded,
    Effect,
    Event,
    InvalidateSnapshot,
    ItemMissing,
    LifecycleState,
    Notify,
    PersistSnapshot,
    ProbeVolume,
    Refresh,
    RestoreCache,
    Retry,
    ScanAborted,
    ScanProgress,
    ScanSucceeded,
    StartScan,
    VolumeFailed,
    VolumeLoaded,
    initial,
    transition,
)
from dusk.core.parser import ProgressCallback
from dusk.core.probe import ScanFailed
from dusk.core.scanner import build_index
from dusk.core.trash import DeletionFailed, move_to_trash
from dusk.core.volume import VolumeProbeFailed, probe_volume
from dusk.models.usage import FolderSnapshot, UsageIndex, VolumeStats
from dusk.storage import SnapshotStore
from dusk.utils import normalize_path

log = logging.getLogger(__name__)

ScanFunction = Callable[[str, ProgressCallback], UsageIndex]
VolumeFunction = Callable[[str], VolumeStats]
DeleteFunction = Callable[[Iterable[str]], None]
StateCallback = Callable[[LifecycleState], None]
NotifyCallback = Callable[[Notify], None]


class ScanLifecycle:
    """Owns the usage index of one root for the duration of a session.

    Collaborators observe :attr:`state`, an immutable value replaced on
    every transition, and talk to the lifecycle only through
    :meth:`refresh`, :meth:`retry`, :meth:`delete_items` and
    :meth:`item_missing`.
    """

    def __init__(
        self,
        root: str,
        store: SnapshotStore,
        *,
        scan: ScanFunction = build_index,
        volume_probe: VolumeFunction = probe_volume,
        deleter: DeleteFunction = move_to_trash,
        on_change: StateCallback | None = None,
        on_notify: NotifyCallback | None = None,
    ) -> None:
        self._state, self._initial_effects = initial(root)
        self._store = store
        self._scan = scan
        self._volume_probe = volume_probe
        self._deleter = deleter
        self._on_change = on_change
        self._on_notify = on_notify

        self._events: queue.Queue[Event | None] = queue.Queue()
        self._changed = threading.Condition()
        self._thread: threading.Thread | None = None
        self._workers = ThreadPoolExecutor(max_workers=2, thread_name_prefix="dusk-worker")
        self._io = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dusk-io")

    @property
    def root(self) -> str:
        return self._state.root

    @property
    def state(self) -> LifecycleState:
        return self._state

    def listing(self, path: str) -> FolderSnapshot | None:
        """Return the published listing of directory *path*, if any."""
        return self._state.index.get(normalize_path(path))

    # ── control ──────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the event loop and begin with the cache check."""
        if self._thread is not None:
            raise RuntimeError("Lifecycle already started")
        self._thread = threading.Thread(target=self._loop, name="dusk-lifecycle", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the event loop.

        A running scan is not killed; its result is discarded.
        """
        self._events.put(None)
        if self._thread is not None:
            self._thread.join(timeout)
        self._workers.shutdown(wait=False, cancel_futures=True)
        self._io.shutdown(wait=True)

    def send(self, event: Event) -> None:
        """Queue *event* for the loop. Never blocks."""
        self._events.put(event)

    def refresh(self) -> None:
        self.send(Refresh())

    def retry(self) -> None:
        self.send(Retry())

    def delete_items(self, paths: Iterable[str]) -> None:
        self.send(DeleteItems(paths=tuple(normalize_path(p) for p in paths)))

    def item_missing(self, path: str) -> None:
        self.send(ItemMissing(path=normalize_path(path)))

    def wait_for(self, predicate: Callable[[LifecycleState], bool], timeout: float | None = None) -> bool:
        """Block until *predicate* holds for the current state.

        Returns False if *timeout* expired first.
        """
        with self._changed:
            return self._changed.wait_for(lambda: predicate(self._state), timeout)

    # ── loop ─────────────────────────────────────────────────────────────

    def _loop(self) -> None:
        self._run_effects(self._initial_effects)
        while True:
            event = self._events.get()
            if event is None:
                break
            self._dispatch(event)
        log.debug("Lifecycle loop for %s stopped", self.root)

    def _dispatch(self, event: Event) -> None:
        previous = self._state
        state, effects = transition(previous, event)
        if state is not previous:
            with self._changed:
                self._state = state
                self._changed.notify_all()
            if state.phase is not previous.phase:
                log.debug("%s -> %s on %s", previous.phase.value, state.phase.value, type(event).__name__)
            if self._on_change:
                self._on_change(state)
        self._run_effects(effects)

    def _run_effects(self, effects: tuple[Effect, ...]) -> None:
        for effect in effects:
            match effect:
                case CheckCache():
                    self._workers.submit(self._check_cache)
                case RestoreCache():
                    self._workers.submit(self._restore_cache)
                case ProbeVolume():
                    self._workers.submit(self._probe_volume)
                case StartScan():
                    self._workers.submit(self._run_scan)
                case DeletePaths(paths=paths):
                    self._workers.submit(self._delete, paths)
                case PersistSnapshot(index=index, volume=volume):
                    self._io.submit(self._persist, index, volume)
                case InvalidateSnapshot():
                    self._io.submit(self._invalidate)
                case Notify():
                    if self._on_notify:
                        self._on_notify(effect)

    # ── effect handlers (worker threads) ─────────────────────────────────

    def _check_cache(self) -> None:
        try:
            available = self._store.is_available()
        except Exception:
            log.exception("Cache check failed")
            available = False
        self.send(CacheChecked(available=available))

    def _restore_cache(self) -> None:
        try:
            snapshot = self._store.hydrate()
        except Exception:
            log.exception("Cache restore failed")
            snapshot = None
        self.send(CacheRestored(snapshot=snapshot))

    def _probe_volume(self) -> None:
        try:
            volume = self._volume_probe(self.root)
        except VolumeProbeFailed as e:
            log.warning("Volume probe failed: %s", e)
            self.send(VolumeFailed(message=f"Could not read disk usage: {e}"))
            return
        except Exception:
            log.exception("Volume probe crashed")
            self.send(VolumeFailed(message="Could not read disk usage"))
            return
        self.send(VolumeLoaded(volume=volume))

    def _run_scan(self) -> None:
        def progress(path: str) -> None:
            self.send(ScanProgress(path=path))

        try:
            index = self._scan(self.root, progress)
        except ScanFailed as e:
            log.warning("Scan of %s failed: %s", self.root, e)
            self.send(ScanAborted(message=str(e)))
            return
        except Exception as e:
            log.exception("Scan of %s crashed", self.root)
            self.send(ScanAborted(message=str(e) or type(e).__name__))
            return
        self.send(ScanSucceeded(index=index))

    def _delete(self, paths: tuple[str, ...]) -> None:
        try:
            self._deleter(paths)
        except DeletionFailed as e:
            log.warning("%s", e)
            self.send(DeletionAborted(message=str(e)))
            return
        except Exception:
            log.exception("Deletion of %d item(s) crashed", len(paths))
            self.send(DeletionAborted(message="Failed to move items to trash"))
            return
        self.send(DeletionSucceeded(paths=paths))

    def _persist(self, index: UsageIndex, volume: VolumeStats) -> None:
        try:
            self._store.persist(index, volume)
        except Exception:
            log.exception("Snapshot persist failed")

    def _invalidate(self) -> None:
        try:
            self._store.invalidate()
        except Exception:
            log.exception("Snapshot invalidation failed")
