"""straitfeed CLI: live AIS collector for the Dover Strait.

Commands:
  collect  run the aisstream.io collector until interrupted
  snapshot show the vessels in the current snapshot file
"""
from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table


app = typer.Typer(
    name="straitfeed",
    help="Live AIS collector writing a rolling vessel snapshot.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("collect")
def collect(
    daemon: bool = typer.Option(False, "--daemon", help="Log to file only, no console output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Override COLLECTOR_LOG_FILE"),
):
    """Stream AIS data and keep the snapshot file up to date."""
    settings = _load_settings()
    if not settings.AISSTREAM_API_KEY:
        console.print("[red]AISSTREAM_API_KEY is not set, cannot start collector[/red]")
        raise typer.Exit(1)

    _configure_logging(log_file or settings.COLLECTOR_LOG_FILE, daemon, settings.LOG_LEVEL)
    logger = logging.getLogger("straitfeed")

    from straitfeed.modules.aisstream_client import AISCollector

    collector = AISCollector.from_settings(settings)
    _install_signal_handlers(collector)

    logger.info("AIS collector starting")
    logger.info("API key: %s...", settings.AISSTREAM_API_KEY[:8])
    logger.info("Bounding box: %s", settings.bounding_box)
    collector.run_forever()


@app.command("snapshot")
def snapshot(
    max_age: Optional[int] = typer.Option(None, "--max-age", help="Override CACHE_MAX_AGE (seconds)"),
):
    """Show vessels from the live snapshot file."""
    from straitfeed.modules.snapshot_writer import load_live_snapshot

    settings = _load_settings()
    ships = load_live_snapshot(
        settings.CACHE_FILE,
        max_age=settings.CACHE_MAX_AGE if max_age is None else max_age,
    )
    if ships is None:
        console.print(f"[yellow]No live data in {settings.CACHE_FILE}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"{len(ships)} vessels")
    for col in ("MMSI", "Name", "Type", "Lat", "Lon", "Speed", "Hdg", "Len"):
        table.add_column(col)
    for s in sorted(ships, key=lambda s: s.get("mmsi", 0)):
        table.add_row(
            str(s.get("mmsi")), str(s.get("name")), str(s.get("typeName")),
            f"{s.get('lat', 0):.4f}", f"{s.get('lon', 0):.4f}",
            f"{s.get('speed', 0):.1f}", str(s.get("heading")), str(s.get("length")),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings():
    """Load settings; configuration faults are fatal at startup."""
    try:
        from straitfeed.config import Settings
        return Settings()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)


def _configure_logging(log_file: str, daemon: bool, level: str = "INFO") -> None:
    """One timestamped line per event, appended to *log_file* (and the console unless daemon)."""
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = []

    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handlers.append(logging.FileHandler(path, mode="a", encoding="utf-8"))
    if not daemon:
        handlers.append(logging.StreamHandler(sys.stdout))

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level)


def _install_signal_handlers(collector) -> None:
    def _handle(signum, frame):
        logging.getLogger("straitfeed").info("Received signal %d, shutting down", signum)
        collector.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
