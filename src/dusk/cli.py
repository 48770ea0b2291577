"""CLI interface for dusk."""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from contextlib import contextmanager
from typing import Iterator

import click

from dusk.core.lifecycle import ScanLifecycle
from dusk.core.machine import LifecycleState, Notify, Phase
from dusk.core.scanner import build_index
from dusk.core.trash import move_to_trash
from dusk.core.volume import probe_volume
from dusk.models.usage import FolderSnapshot, UsageEntry, largest_entries
from dusk.settings import Settings
from dusk.storage import SnapshotStore
from dusk.utils import bytes_to_human, is_within, normalize_path


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _resolve_root(root: str | None) -> str:
    raw = root or Settings.instance().scan_root
    return normalize_path(os.path.abspath(os.path.expanduser(raw)))


def _build_store(root: str) -> SnapshotStore:
    return SnapshotStore(root, Settings.instance().cache_dir)


def _build_lifecycle(root: str, *, show_progress: bool = False, on_notify=None) -> ScanLifecycle:
    settings = Settings.instance()
    last_path = [""]

    def on_change(state: LifecycleState) -> None:
        if not show_progress or state.phase is not Phase.SCANNING or not state.active_path:
            return
        if state.active_path == last_path[0]:
            return
        last_path[0] = state.active_path
        width = 78
        path = state.active_path
        if len(path) > width:
            path = "…" + path[-(width - 1):]
        click.echo(f"\r\033[K  {click.style(path, fg='bright_black')}", nl=False, err=True)

    return ScanLifecycle(
        root,
        _build_store(root),
        scan=lambda r, progress: build_index(r, progress, settings=settings),
        volume_probe=probe_volume,
        deleter=move_to_trash,
        on_change=on_change,
        on_notify=on_notify,
    )


@contextmanager
def _ready_lifecycle(root: str, *, show_progress: bool = False, on_notify=None) -> Iterator[ScanLifecycle]:
    """Start a lifecycle for *root*, block until it is ready and stop it on exit.

    Exits with status 1 if the lifecycle ends up in the error state.
    """
    lifecycle = _build_lifecycle(root, show_progress=show_progress, on_notify=on_notify)
    lifecycle.start()
    try:
        lifecycle.wait_for(lambda s: s.phase.is_ready or s.phase is Phase.ERROR)
        if show_progress:
            click.echo("\r\033[K", nl=False, err=True)
        state = lifecycle.state
        if state.phase is Phase.ERROR:
            click.echo(f"{click.style('✗', fg='red')} {state.error}", err=True)
            sys.exit(1)
        yield lifecycle
    finally:
        lifecycle.stop()


def _entry_json(entry: UsageEntry) -> dict:
    return {
        "path": entry.path,
        "name": entry.name,
        "size_bytes": entry.size_bytes,
        "restricted": entry.denied,
    }


def _echo_entries(entries: list[UsageEntry] | tuple[UsageEntry, ...]) -> None:
    for entry in entries:
        if entry.denied:
            size = click.style(f"{entry.size_label:>12s}", fg="red")
        else:
            size = click.style(f"{entry.size_label:>12s}", fg="green", bold=True)
        click.echo(f"  {size}  {entry.path}")


def _echo_volume(state: LifecycleState) -> None:
    volume = state.volume
    click.echo(
        f"\n{click.style('💽', bold=True)} {state.root} — "
        f"{bytes_to_human(volume.free_bytes)} free of {bytes_to_human(volume.total_bytes)} "
        f"({click.style(volume.usage_label, fg='cyan', bold=True)} used)\n"
    )


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug)")
def main(verbose: int) -> None:
    """dusk — incremental disk usage index."""
    _setup_logging(verbose)


# ── scan ─────────────────────────────────────────────────────────────────

@main.command()
@click.argument("root", required=False)
@click.option("--refresh", is_flag=True, help="Ignore the cached index and rescan")
@click.option("--limit", "-n", default=20, show_default=True, help="Number of entries to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def scan(root: str | None, refresh: bool, limit: int, as_json: bool) -> None:
    """Index ROOT (default: configured root) and show its largest entries."""
    root = _resolve_root(root)
    if refresh:
        _build_store(root).invalidate()

    with _ready_lifecycle(root, show_progress=not as_json and sys.stderr.isatty()) as lifecycle:
        state = lifecycle.state

    listing = state.index.get(state.root) or FolderSnapshot()
    if as_json:
        data = {
            "root": state.root,
            "volume": {
                "free_bytes": state.volume.free_bytes,
                "total_bytes": state.volume.total_bytes,
                "usage_label": state.volume.usage_label,
            },
            "folders": len(state.index),
            "entries": [_entry_json(e) for e in listing.accessible[:limit]],
            "restricted": [_entry_json(e) for e in listing.restricted],
        }
        click.echo(json.dumps(data, indent=2))
        return

    _echo_volume(state)
    if listing.is_empty:
        click.echo("  Nothing above the size threshold.")
        return
    _echo_entries(listing.accessible[:limit])
    _echo_entries(listing.restricted)
    click.echo()


# ── ls ───────────────────────────────────────────────────────────────────

@main.command("ls")
@click.argument("path", required=False)
@click.option("--root", "-r", default=None, help="Indexed root (default: configured root)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def ls_cmd(path: str | None, root: str | None, as_json: bool) -> None:
    """List the indexed contents of PATH."""
    root = _resolve_root(root)
    target = normalize_path(os.path.abspath(os.path.expanduser(path))) if path else root
    if not is_within(target, root):
        raise click.BadParameter(f"{target} is not inside {root}", param_hint="PATH")

    with _ready_lifecycle(root, show_progress=not as_json and sys.stderr.isatty()) as lifecycle:
        listing = lifecycle.listing(target) or FolderSnapshot()

    if as_json:
        data = {
            "path": target,
            "accessible": [_entry_json(e) for e in listing.accessible],
            "restricted": [_entry_json(e) for e in listing.restricted],
        }
        click.echo(json.dumps(data, indent=2))
        return

    if listing.is_empty:
        click.echo(f"No indexed entries under {target}.")
        return
    click.echo(f"\n{click.style(target, fg='blue', bold=True)} — {bytes_to_human(listing.total_bytes)}\n")
    _echo_entries(listing.accessible)
    _echo_entries(listing.restricted)
    click.echo()


# ── top ──────────────────────────────────────────────────────────────────

@main.command()
@click.option("--root", "-r", default=None, help="Indexed root (default: configured root)")
@click.option("--limit", "-n", default=25, show_default=True, help="Number of entries to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def top(root: str | None, limit: int, as_json: bool) -> None:
    """Show the largest entries anywhere in the index."""
    root = _resolve_root(root)
    with _ready_lifecycle(root, show_progress=not as_json and sys.stderr.isatty()) as lifecycle:
        entries = largest_entries(lifecycle.state.index, limit)
    if as_json:
        click.echo(json.dumps([_entry_json(e) for e in entries], indent=2))
        return

    click.echo(f"\n{click.style('📊', bold=True)} Largest entries under {root}\n")
    _echo_entries(entries)
    click.echo()


# ── rm ───────────────────────────────────────────────────────────────────

@main.command("rm")
@click.argument("paths", nargs=-1, required=True)
@click.option("--root", "-r", default=None, help="Indexed root (default: configured root)")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def rm_cmd(paths: tuple[str, ...], root: str | None, yes: bool, as_json: bool) -> None:
    """Move PATHS to the trash and update the index without rescanning."""
    root = _resolve_root(root)
    targets = [normalize_path(os.path.abspath(os.path.expanduser(p))) for p in paths]
    outside = [t for t in targets if t == root or not is_within(t, root)]
    if outside:
        raise click.BadParameter(f"{', '.join(outside)} is not inside {root}", param_hint="PATHS")

    if not yes and not as_json:
        click.echo("\nMove to trash:\n")
        for target in targets:
            click.echo(f"  {target}")
        click.echo()
        if not click.confirm("Continue?", default=False):
            click.echo("Aborted.")
            return

    done = threading.Event()
    notices: list[Notify] = []

    def on_notify(notice: Notify) -> None:
        notices.append(notice)
        done.set()

    with _ready_lifecycle(root, on_notify=on_notify) as lifecycle:
        before = lifecycle.state
        lifecycle.delete_items(targets)
        done.wait()
        lifecycle.wait_for(lambda s: s.phase is Phase.READY_IDLE)
        after = lifecycle.state

    notice = notices[0]
    freed = max(0, after.volume.free_bytes - before.volume.free_bytes)
    if as_json:
        click.echo(json.dumps({
            "status": "error" if notice.failure else "deleted",
            "message": notice.message,
            "paths": targets,
            "freed_bytes": freed,
        }, indent=2))
    elif notice.failure:
        click.echo(f"  {click.style('✗', fg='red')} {notice.message}")
    else:
        click.echo(
            f"  {click.style('✓', fg='green')} {notice.title} — "
            f"{click.style(bytes_to_human(freed), fg='green', bold=True)} reclaimed"
        )
    if notice.failure:
        sys.exit(1)


# ── clear ────────────────────────────────────────────────────────────────

@main.command()
@click.option("--root", "-r", default=None, help="Indexed root (default: configured root)")
def clear(root: str | None) -> None:
    """Forget the cached index so the next run rescans."""
    root = _resolve_root(root)
    _build_store(root).invalidate()
    click.echo(f"Cleared cached index for {root}.")


# ── service ──────────────────────────────────────────────────────────────

@main.group()
def service() -> None:
    """D-Bus service management."""


@service.command("start")
@click.option("--root", "-r", default=None, help="Indexed root (default: configured root)")
def service_start(root: str | None) -> None:
    """Start the D-Bus service in foreground."""
    from dusk.dbus_service import start_service

    click.echo("Starting dusk D-Bus service...")
    start_service(_resolve_root(root))
