"""Offline photo queue CLI commands."""

import asyncio
import json
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import httpx
import typer

from fieldsync.config import Settings, get_settings
from fieldsync.sync import (
    BackendClient,
    ConnectivityMonitor,
    DrainSummary,
    PhotoCapture,
    PhotoQueue,
    PhotoSync,
)

queue_app = typer.Typer(
    name="queue",
    help="Offline photo queue - inspect, add, drain and clear queued uploads.",
    no_args_is_help=True,
)


def _output(data: dict | list, as_json: bool, human_lines: list[str]) -> None:
    """Output data as JSON or human-readable format."""
    if as_json:
        typer.echo(json.dumps(data))
    else:
        for line in human_lines:
            typer.echo(line)


def _open_queue(settings: Settings) -> PhotoQueue:
    return PhotoQueue(settings.queue_db_path)


async def _run_drain(settings: Settings) -> DrainSummary | None:
    """Probe the backend once and drain the queue if it is reachable."""
    queue = _open_queue(settings)
    try:
        async with BackendClient.from_settings(settings) as backend:
            monitor = ConnectivityMonitor(
                probe=backend.check_health,
                interval=settings.probe_interval,
                initial=False,
            )
            await monitor.probe()
            sync = PhotoSync(
                queue,
                backend,
                monitor,
                retry_base_delay=settings.retry_base_delay,
                retry_max_delay=settings.retry_max_delay,
            )
            try:
                return await sync.drain()
            finally:
                await sync.stop()
    finally:
        queue.close()


async def _run_watch(
    settings: Settings,
    shutdown: asyncio.Event,
    on_summary: Callable[[DrainSummary], None] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Probe the backend and drain on every offline to online transition.

    Runs until shutdown is set, then stops the probe loop and the sync
    session before closing the queue.
    """
    queue = _open_queue(settings)
    try:
        async with BackendClient.from_settings(settings, transport=transport) as backend:
            monitor = ConnectivityMonitor(
                probe=backend.check_health,
                interval=settings.probe_interval,
                initial=False,
            )
            sync = PhotoSync(
                queue,
                backend,
                monitor,
                retry_base_delay=settings.retry_base_delay,
                retry_max_delay=settings.retry_max_delay,
            )
            if on_summary is not None:
                sync.on_summary(on_summary)

            await sync.start()
            probe_task = asyncio.create_task(monitor.run())
            try:
                await shutdown.wait()
            finally:
                monitor.stop()
                probe_task.cancel()
                try:
                    await probe_task
                except asyncio.CancelledError:
                    pass
                await sync.stop()
    finally:
        queue.close()


async def _watch_until_signalled(
    settings: Settings,
    on_summary: Callable[[DrainSummary], None] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Run the watch loop until SIGINT or SIGTERM arrives."""
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)
    try:
        await _run_watch(settings, shutdown, on_summary, transport)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


@queue_app.command()
def status(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Show how many photos are waiting for upload."""
    settings = get_settings()
    queue = _open_queue(settings)
    try:
        count = queue.count()
    finally:
        queue.close()

    _output(
        {"queued": count, "db_path": str(settings.queue_db_path)},
        output_json,
        [f"Queue: {count} photo{'s' if count != 1 else ''} waiting for upload"],
    )


@queue_app.command(name="list")
def list_command(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """List queued photos, oldest first."""
    queue = _open_queue(get_settings())
    try:
        items = [
            {
                "id": item.id,
                "project_id": item.project_id,
                "file_name": item.file_name,
                "file_size": item.file_size,
                "queued_at": datetime.fromtimestamp(
                    item.timestamp / 1000, tz=timezone.utc
                ).isoformat(),
            }
            for item in queue.list_queued()
        ]
    finally:
        queue.close()

    lines = [
        f"{i['id']}  {i['project_id']}  {i['file_name']} ({i['file_size']} bytes)  {i['queued_at']}"
        for i in items
    ] or ["Queue is empty."]
    _output(items, output_json, lines)


@queue_app.command()
def add(
    filepath: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    project_id: str = typer.Option(..., "--project", "-p", help="Project ID"),
    organization_id: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    uploaded_by: str = typer.Option(..., "--user", "-u", help="Uploading user ID"),
    caption: str = typer.Option(None, "--caption", help="Photo caption"),
    notes: str = typer.Option(None, "--notes", help="Photo notes"),
    room_type: str = typer.Option(None, "--room", help="Room type, or 'Auto-detect'"),
    before: bool = typer.Option(False, "--before", help="Mark as a before photo"),
    after: bool = typer.Option(False, "--after", help="Mark as an after photo"),
    lat: float = typer.Option(None, "--lat", help="Latitude"),
    lng: float = typer.Option(None, "--lng", help="Longitude"),
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Queue a photo file for upload."""
    settings = get_settings()
    queue = _open_queue(settings)
    try:
        photo = PhotoCapture.from_file(
            filepath,
            project_id=project_id,
            organization_id=organization_id,
            uploaded_by=uploaded_by,
            caption=caption,
            notes=notes,
            room_type=room_type,
            is_before_photo=before,
            is_after_photo=after,
            location_lat=lat,
            location_lng=lng,
        )
        queue_id = queue.enqueue(photo)
    finally:
        queue.close()

    _output(
        {"status": "queued", "id": queue_id},
        output_json,
        [f"Queued {filepath.name} (id: {queue_id})"],
    )


@queue_app.command()
def drain(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Upload queued photos now if the backend is reachable."""
    summary = asyncio.run(_run_drain(get_settings()))

    if summary is None:
        _output({"status": "busy"}, output_json, ["A drain is already running."])
        return

    data = {"status": "done", "succeeded": summary.succeeded, "failed": summary.failed}
    if summary.total == 0:
        _output(data, output_json, ["Nothing to upload (queue empty or backend unreachable)."])
        return

    _output(data, output_json, [f"{summary.title}: {summary.message}"])
    if summary.failed:
        raise typer.Exit(1)


@queue_app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Discard every queued photo without uploading it."""
    if not yes:
        typer.confirm("Discard all queued photos?", abort=True)

    queue = _open_queue(get_settings())
    try:
        removed = queue.clear()
    finally:
        queue.close()

    _output(
        {"status": "cleared", "removed": removed},
        output_json,
        [f"Removed {removed} queued photo{'s' if removed != 1 else ''}."],
    )


@queue_app.command()
def watch(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Upload queued photos whenever the backend becomes reachable.

    Probes the backend every probe_interval seconds and drains the queue
    each time it comes back online. Press Ctrl+C to stop.
    """
    settings = get_settings()

    def report(summary: DrainSummary) -> None:
        _output(
            {"status": "drained", "succeeded": summary.succeeded, "failed": summary.failed},
            output_json,
            [f"{summary.title}: {summary.message}"],
        )

    _output(
        {"status": "watching", "probe_interval": settings.probe_interval},
        output_json,
        [f"Watching for connectivity (probe every {settings.probe_interval:g}s). Press Ctrl+C to stop."],
    )
    asyncio.run(_watch_until_signalled(settings, report))
    _output({"status": "stopped"}, output_json, ["Stopped."])
