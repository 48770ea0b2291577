"""D-Bus service exposing one scan lifecycle.

D-Bus methods use PascalCase per D-Bus convention, and type signatures
like "as" and "(sb)" are D-Bus protocol types, not Python syntax.
"""

from __future__ import annotations

import asyncio
import json
import logging

from dbus_next.aio import MessageBus
from dbus_next.service import ServiceInterface, method, signal
from dbus_next import BusType

from dusk.core.lifecycle import ScanLifecycle
from dusk.core.machine import LifecycleState, Notify, Phase
from dusk.core.scanner import build_index
from dusk.models.usage import UsageEntry, largest_entries
from dusk.settings import Settings
from dusk.storage import SnapshotStore
from dusk.utils import normalize_path

log = logging.getLogger(__name__)

_BUS_NAME = "io.github.dusk"
_OBJECT_PATH = "/io/github/dusk"
_INTERFACE = "io.github.dusk.Index"


def _entry_dict(entry: UsageEntry) -> dict:
    return {
        "path": entry.path,
        "name": entry.name,
        "size_bytes": entry.size_bytes,
        "size_label": entry.size_label,
    }


def state_to_json(state: LifecycleState) -> str:
    """Serialize the observable lifecycle state (without the index)."""
    return json.dumps({
        "root": state.root,
        "phase": state.phase.value,
        "active_path": state.active_path,
        "error": state.error,
        "deleting": state.deleting,
        "folders": len(state.index),
        "volume": {
            "free_bytes": state.volume.free_bytes,
            "total_bytes": state.volume.total_bytes,
            "usage_label": state.volume.usage_label,
        },
    })


# noinspection PyPep8Naming
class DuskDBusService(ServiceInterface):
    """D-Bus service interface for dusk."""

    def __init__(self, root: str, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(_INTERFACE)
        self._loop = loop
        self._last_phase: Phase | None = None
        settings = Settings.instance()
        self._lifecycle = ScanLifecycle(
            root,
            SnapshotStore(root, settings.cache_dir),
            scan=lambda r, progress: build_index(r, progress, settings=settings),
            on_change=self._on_change,
            on_notify=self._on_notify,
        )

    def start(self) -> None:
        self._lifecycle.start()

    def stop(self) -> None:
        self._lifecycle.stop(timeout=5)

    # Lifecycle callbacks arrive on worker threads.

    def _on_change(self, state: LifecycleState) -> None:
        if state.phase is Phase.SCANNING and state.active_path:
            self._loop.call_soon_threadsafe(self.ScanProgress, state.active_path)
        if state.phase is not self._last_phase:
            self._last_phase = state.phase
            self._loop.call_soon_threadsafe(self.StateChanged, state.phase.value)

    def _on_notify(self, notice: Notify) -> None:
        self._loop.call_soon_threadsafe(self.Notification, notice.message, notice.failure)

    @method()
    def GetState(self) -> "s":  # type: ignore[override]
        """Current lifecycle state as JSON."""
        return state_to_json(self._lifecycle.state)

    @method()
    def ListFolder(self, path: "s") -> "s":  # type: ignore[override]
        """Accessible and restricted entries of one folder as JSON."""
        listing = self._lifecycle.listing(path)
        if listing is None:
            return json.dumps({"path": normalize_path(path), "accessible": [], "restricted": []})
        return json.dumps({
            "path": normalize_path(path),
            "accessible": [_entry_dict(e) for e in listing.accessible],
            "restricted": [_entry_dict(e) for e in listing.restricted],
        })

    @method()
    def Top(self, limit: "u") -> "s":  # type: ignore[override]
        """Largest entries across the whole index as JSON."""
        entries = largest_entries(self._lifecycle.state.index, limit or 1000)
        return json.dumps([_entry_dict(e) for e in entries])

    @method()
    def Refresh(self):  # type: ignore[override]
        """Drop the cached index and rescan."""
        self._lifecycle.refresh()

    @method()
    def Retry(self):  # type: ignore[override]
        """Retry after a failed volume probe or scan."""
        self._lifecycle.retry()

    @method()
    def DeleteItems(self, paths: "as"):  # type: ignore[override]
        """Move paths to the trash and prune them from the index."""
        self._lifecycle.delete_items(paths)

    @method()
    def ItemMissing(self, path: "s"):  # type: ignore[override]
        """Report a listed path that no longer exists on disk."""
        self._lifecycle.item_missing(path)

    @signal()
    def ScanProgress(self, path: str) -> "s":  # type: ignore[override]
        return path

    @signal()
    def StateChanged(self, phase: str) -> "s":  # type: ignore[override]
        return phase

    @signal()
    def Notification(self, message: str, failure: bool) -> "(sb)":  # type: ignore[override]
        return [message, failure]


async def run_service(root: str) -> None:
    """Start the D-Bus service."""
    bus = await MessageBus(bus_type=BusType.SESSION).connect()
    service = DuskDBusService(root, asyncio.get_running_loop())
    bus.export(_OBJECT_PATH, service)
    await bus.request_name(_BUS_NAME)
    log.info("D-Bus service started on %s for %s", _BUS_NAME, root)
    service.start()
    try:
        await bus.wait_for_disconnect()
    finally:
        service.stop()


def start_service(root: str) -> None:
    """Entry point to start the D-Bus service."""
    asyncio.run(run_service(root))
