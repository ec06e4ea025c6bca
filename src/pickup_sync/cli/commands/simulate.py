"""``pickup-sync simulate`` commands run the sync protocol against an in-memory store."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from pickup_sync.config import SettingsStore
from pickup_sync.errors import AlreadyAcceptedError, PickupSyncError
from pickup_sync.identity import StaticSession, UserIdentity, UserRole
from pickup_sync.lifecycle import RequestLifecycleManager
from pickup_sync.models import LocationSample, PickupLocation, WasteItem, location_updates_collection
from pickup_sync.store import InMemoryDocumentStore, Query
from pickup_sync.tracking import LocationTrackingChannel

app = typer.Typer(help="Exercise the sync protocol locally")
console = Console()


async def _accept_race(collectors: int, latency: float) -> tuple[str, list[tuple[str, str]]]:
    settings = SettingsStore().load()
    store = InMemoryDocumentStore(
        latency_seconds=latency,
        max_attempts=settings.transaction_max_attempts,
        backoff_seconds=settings.transaction_backoff_seconds if latency > 0 else 0.0,
    )
    household = StaticSession(UserIdentity("household-1", UserRole.HOUSEHOLD, "Household"))
    owner = RequestLifecycleManager(store, household)
    request = await owner.create(
        [WasteItem.priced("plastic", 5.0), WasteItem.priced("metal", 3.0)],
        PickupLocation(lat=-6.2, lng=106.8, address="Jl. Simulasi 1"),
    )

    collector_ids = [f"collector-{n + 1}" for n in range(collectors)]
    managers = [
        RequestLifecycleManager(store, StaticSession(UserIdentity(cid, UserRole.COLLECTOR)))
        for cid in collector_ids
    ]
    results = await asyncio.gather(
        *(manager.accept(request.id) for manager in managers), return_exceptions=True
    )

    outcomes: list[tuple[str, str]] = []
    for collector_id, result in zip(collector_ids, results):
        if isinstance(result, AlreadyAcceptedError):
            outcomes.append((collector_id, "already accepted"))
        elif isinstance(result, BaseException):
            outcomes.append((collector_id, f"error: {result}"))
        else:
            outcomes.append((collector_id, "accepted"))

    final = await owner.get(request.id)
    return final.collector_id or "", outcomes


@app.command("accept-race")
def accept_race(
    collectors: int = typer.Option(5, "--collectors", "-n", min=1, help="Concurrent collectors"),
    latency: float = typer.Option(0.0, "--latency", min=0.0, help="Simulated store round trip (s)"),
) -> None:
    """Have N collectors accept the same pending request at once."""
    winner, outcomes = asyncio.run(_accept_race(collectors, latency))

    table = Table(title="Accept race")
    table.add_column("Collector", style="cyan")
    table.add_column("Outcome")
    for collector_id, outcome in outcomes:
        style = "green" if outcome == "accepted" else "yellow"
        table.add_row(collector_id, f"[{style}]{outcome}[/{style}]")
    console.print(table)

    winners = [cid for cid, outcome in outcomes if outcome == "accepted"]
    if len(winners) != 1 or winners[0] != winner:
        console.print(f"[red]✗[/red] Expected exactly one winner, got {len(winners)}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Request accepted by {winner}")


def _load_samples(path: Path) -> list[LocationSample]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Cannot read samples from {path}: {exc}") from exc
    if not isinstance(raw, list) or not all(isinstance(entry, dict) for entry in raw):
        raise typer.BadParameter("Sample file must contain a JSON list of objects")
    return [LocationSample.from_dict(entry) for entry in raw]


async def _track(
    samples: list[LocationSample], min_distance: float | None, max_history: int | None
) -> dict[str, Any]:
    settings = SettingsStore().load()
    updates: dict[str, Any] = {}
    if min_distance is not None:
        updates["min_distance_meters"] = min_distance
    if max_history is not None:
        updates["max_location_history"] = max_history
    settings = settings.model_copy(update=updates)

    store = InMemoryDocumentStore()
    channel = LocationTrackingChannel(store, settings)
    request_id = "simulated-request"
    accepted = filtered = 0
    for index, sample in enumerate(samples):
        if not sample.timestamp:
            sample = LocationSample(
                latitude=sample.latitude,
                longitude=sample.longitude,
                accuracy=sample.accuracy,
                timestamp=index + 1,
                speed=sample.speed,
            )
        try:
            uploaded = await channel.upload(request_id, "collector-1", sample)
        except PickupSyncError as exc:
            raise typer.BadParameter(f"Sample {index}: {exc}") from exc
        if uploaded:
            accepted += 1
        else:
            filtered += 1
    await channel.drain()

    retained = await store.query(Query(location_updates_collection(request_id)))
    latest = await channel.get_latest(request_id)
    return {
        "samples": len(samples),
        "accepted": accepted,
        "filtered": filtered,
        "retained": len(retained),
        "latest": latest.to_dict() if latest else None,
        "min_distance_meters": settings.min_distance_meters,
        "max_location_history": settings.max_location_history,
    }


@app.command("track")
def track(
    samples_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON list of samples"),
    min_distance: Optional[float] = typer.Option(None, "--min-distance", min=0.0, help="Override filter (m)"),
    max_history: Optional[int] = typer.Option(None, "--max-history", min=1, help="Override retention"),
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
) -> None:
    """Replay location samples through the distance filter and retention."""
    samples = _load_samples(samples_file)
    summary = asyncio.run(_track(samples, min_distance, max_history))

    if as_json:
        typer.echo(json.dumps(summary, indent=2, sort_keys=True))
        return

    table = Table(title=f"Location replay ({samples_file.name})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="bold")
    for key in ("samples", "accepted", "filtered", "retained", "min_distance_meters", "max_location_history"):
        table.add_row(key, str(summary[key]))
    console.print(table)
