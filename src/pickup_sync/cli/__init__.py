"""``pickup-sync`` command line: settings management and local simulations."""

from __future__ import annotations

import logging

import typer

from pickup_sync.cli.commands import config_cmd, simulate
from pickup_sync.config import SettingsStore

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = typer.Typer(
    name="pickup-sync",
    help="Client-side sync tooling for household/collector pickup requests",
    add_completion=False,
    no_args_is_help=True,
)
app.add_typer(config_cmd.app, name="config")
app.add_typer(simulate.app, name="simulate")


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Configure logging from the saved settings before running a command."""
    settings = SettingsStore().load()
    configure_logging("DEBUG" if verbose else settings.log_level)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
