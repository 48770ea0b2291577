"""Tests for the lifecycle transition function."""

from __future__ import annotations

from dataclasses import replace

import pytest

from dusk.core.machine import (
    EMPTY_INDEX,
    CacheChecked,
    CacheRestored,
    CheckCache,
    DeleteItems,
    DeletePaths,
    DeletionAborted,
    DeletionSucceeded,
    InvalidateSnapshot,
    ItemMissing,
    LifecycleState,
    Notify,
    PersistSnapshot,
    Phase,
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
    publish,
    transition,
)
from dusk.models.usage import FolderSnapshot, UsageEntry, VolumeStats
from dusk.storage import Snapshot

ROOT = "/home/user"
VOLUME = VolumeStats(free_bytes=100 * 2**20, total_bytes=400 * 2**20)
BIG = "/home/user/big.bin"


def at(phase: Phase, **changes) -> LifecycleState:
    return replace(LifecycleState(root=ROOT, volume=VOLUME), phase=phase, **changes)


def big_index():
    return publish({ROOT: FolderSnapshot.build([UsageEntry(BIG, 5_120_000)])})


class TestStartup:
    def test_initial(self):
        state, effects = initial("/home/user/")
        assert state.phase is Phase.CHECKING_CACHE
        assert state.root == ROOT
        assert effects == (CheckCache(),)

    def test_cache_available(self):
        state, effects = transition(at(Phase.CHECKING_CACHE), CacheChecked(available=True))
        assert state.phase is Phase.RESTORING_CACHE
        assert effects == (RestoreCache(),)

    def test_cache_unavailable(self):
        state, effects = transition(at(Phase.CHECKING_CACHE), CacheChecked(available=False))
        assert state.phase is Phase.LOADING_VOLUME
        assert effects == (ProbeVolume(),)

    def test_restore_success(self, sample_index):
        snapshot = Snapshot(index=sample_index, volume=VOLUME)
        state, effects = transition(at(Phase.RESTORING_CACHE), CacheRestored(snapshot=snapshot))
        assert state.phase is Phase.READY_IDLE
        assert dict(state.index) == sample_index
        assert state.volume == VOLUME
        assert effects == ()

    def test_restore_absent(self):
        state, effects = transition(at(Phase.RESTORING_CACHE), CacheRestored(snapshot=None))
        assert state.phase is Phase.LOADING_VOLUME
        assert effects == (ProbeVolume(),)

    def test_volume_loaded(self):
        volume = VolumeStats(free_bytes=1, total_bytes=2)
        state, effects = transition(at(Phase.LOADING_VOLUME), VolumeLoaded(volume=volume))
        assert state.phase is Phase.SCANNING
        assert state.volume == volume
        assert effects == (StartScan(),)

    def test_volume_failed(self):
        state, effects = transition(at(Phase.LOADING_VOLUME), VolumeFailed(message="df exploded"))
        assert state.phase is Phase.ERROR
        assert state.error == "df exploded"
        assert effects == ()


class TestScanning:
    def test_progress(self):
        state, effects = transition(at(Phase.SCANNING), ScanProgress(path="/home/user/x"))
        assert state.phase is Phase.SCANNING
        assert state.active_path == "/home/user/x"
        assert effects == ()

    def test_success_publishes_and_persists(self, sample_index):
        state, effects = transition(at(Phase.SCANNING, active_path="/x"), ScanSucceeded(index=sample_index))
        assert state.phase is Phase.READY_IDLE
        assert state.active_path == ""
        assert dict(state.index) == sample_index
        assert effects == (PersistSnapshot(index=state.index, volume=VOLUME),)

    def test_published_index_is_read_only(self, sample_index):
        working = dict(sample_index)
        state, _ = transition(at(Phase.SCANNING), ScanSucceeded(index=working))
        working.clear()
        assert dict(state.index) == sample_index
        with pytest.raises(TypeError):
            state.index["/elsewhere"] = FolderSnapshot()  # type: ignore[index]

    def test_failure(self):
        state, effects = transition(at(Phase.SCANNING), ScanAborted(message="Scan failed with code 2"))
        assert state.phase is Phase.ERROR
        assert "code 2" in state.error
        assert effects == ()

    def test_refresh_ignored_while_scanning(self):
        state = at(Phase.SCANNING)
        assert transition(state, Refresh()) == (state, ())

    def test_stale_scan_result_ignored(self, sample_index):
        state = at(Phase.READY_IDLE, index=big_index())
        assert transition(state, ScanSucceeded(index=sample_index)) == (state, ())


class TestReady:
    def test_refresh(self):
        state, effects = transition(at(Phase.READY_IDLE, index=big_index()), Refresh())
        assert state.phase is Phase.LOADING_VOLUME
        assert state.index is EMPTY_INDEX
        assert effects == (InvalidateSnapshot(), ProbeVolume())

    def test_delete_items(self):
        state, effects = transition(at(Phase.READY_IDLE, index=big_index()), DeleteItems(paths=(BIG,)))
        assert state.phase is Phase.READY_DELETING
        assert state.deleting is True
        assert effects == (DeletePaths(paths=(BIG,)),)

    def test_delete_nothing_ignored(self):
        state = at(Phase.READY_IDLE)
        assert transition(state, DeleteItems(paths=())) == (state, ())

    def test_second_delete_ignored_while_deleting(self):
        state = at(Phase.READY_DELETING, deleting=True)
        assert transition(state, DeleteItems(paths=(BIG,))) == (state, ())

    def test_deletion_success_prunes(self):
        deleting = at(Phase.READY_DELETING, index=big_index(), deleting=True)
        state, effects = transition(deleting, DeletionSucceeded(paths=(BIG,)))

        assert state.phase is Phase.READY_IDLE
        assert state.deleting is False
        assert dict(state.index) == {}
        assert state.volume.free_bytes == VOLUME.free_bytes + 5_120_000
        assert state.volume.total_bytes == VOLUME.total_bytes
        assert effects[0] == PersistSnapshot(index=state.index, volume=state.volume)
        assert effects[1] == Notify(title="Moved to Trash", message="Space reclaimed")

    def test_deletion_success_recomputes_usage_label(self):
        volume = VolumeStats(free_bytes=0, total_bytes=10_240_000)
        deleting = at(Phase.READY_DELETING, index=big_index(), volume=volume, deleting=True)
        state, _ = transition(deleting, DeletionSucceeded(paths=(BIG,)))
        assert state.volume.usage_label == "50%"

    def test_deletion_failure_leaves_index(self):
        index = big_index()
        deleting = at(Phase.READY_DELETING, index=index, deleting=True)
        state, effects = transition(deleting, DeletionAborted(message="nope"))

        assert state.phase is Phase.READY_IDLE
        assert state.deleting is False
        assert state.index is index
        assert state.volume == VOLUME
        assert effects == (Notify(title="Error", message="nope", failure=True),)

    @pytest.mark.parametrize("phase", [Phase.READY_IDLE, Phase.READY_DELETING])
    def test_item_missing(self, phase):
        state, effects = transition(at(phase, index=big_index()), ItemMissing(path=BIG))
        assert state.phase is phase
        assert dict(state.index) == {}
        assert effects == (PersistSnapshot(index=state.index, volume=state.volume),)

    def test_item_missing_unknown_path(self):
        state = at(Phase.READY_IDLE, index=big_index())
        new_state, effects = transition(state, ItemMissing(path="/home/user/other"))
        assert dict(new_state.index) == dict(state.index)
        assert len(effects) == 1

    def test_retry_ignored_when_ready(self):
        state = at(Phase.READY_IDLE)
        assert transition(state, Retry()) == (state, ())


class TestError:
    def test_retry(self):
        state, effects = transition(at(Phase.ERROR, error="boom"), Retry())
        assert state.phase is Phase.LOADING_VOLUME
        assert state.error == ""
        assert effects == (ProbeVolume(),)

    @pytest.mark.parametrize("event", [Refresh(), DeleteItems(paths=(BIG,)), ItemMissing(path=BIG)])
    def test_user_events_ignored(self, event):
        state = at(Phase.ERROR, error="boom")
        assert transition(state, event) == (state, ())
