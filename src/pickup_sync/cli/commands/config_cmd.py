"""``pickup-sync config`` commands: show and change persisted settings."""

from __future__ import annotations

import json

import typer
from rich.console import Console
from rich.table import Table

from pickup_sync.config import SETTING_SECTIONS, SettingsStore
from pickup_sync.errors import ValidationError

app = typer.Typer(help="Show or change pickup-sync settings")
console = Console()


@app.command("show")
def show(
    as_json: bool = typer.Option(False, "--json", help="Print settings as JSON"),
) -> None:
    """Display the effective settings and where each value comes from."""
    store = SettingsStore()
    settings = store.load()
    sources = store.sources()

    if as_json:
        typer.echo(json.dumps(settings.model_dump(), indent=2, sort_keys=True))
        return

    table = Table(title=f"Settings ({store.config_file})")
    table.add_column("Setting", style="cyan")
    table.add_column("Section", style="dim")
    table.add_column("Value", style="bold")
    table.add_column("Source")

    for key, section in SETTING_SECTIONS.items():
        source = sources[key]
        source_display = "[green]file[/green]" if source == "file" else "[dim]default[/dim]"
        table.add_row(key, section, str(getattr(settings, key)), source_display)

    console.print(table)


@app.command("set")
def set_value(
    key: str = typer.Argument(..., help="Setting name, e.g. min_distance_meters"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Validate and save one setting to config.toml."""
    store = SettingsStore()
    try:
        settings = store.set_value(key, value)
    except ValidationError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc

    console.print(f"[green]✓[/green] {key} = {getattr(settings, key)!r} ({store.config_file})")
