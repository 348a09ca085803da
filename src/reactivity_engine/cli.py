"""Typer CLI commands for the reactivity engine."""

from __future__ import annotations

import asyncio
import datetime as dt
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.table import Table

from .batch import calculation_window
from .config import AppConfig, ConfigurationError, load_config
from .database import create_engine_with_retries, init_schema
from .logging_setup import configure_logging, get_logger
from .records import Region
from .runtime import open_engine
from .service import DEFAULT_TOP_LIMIT

app = typer.Typer(name="reactivity-engine", help="Artist metrics and song reactivity commands")
logger = get_logger(__name__)

ConfigOption = typer.Option(None, "--config", "-c", exists=True, help="Path to YAML configuration")


def _initialise(config_path: Optional[Path]) -> AppConfig:
    try:
        config = load_config(config_path) if config_path is not None else AppConfig()
    except ConfigurationError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc
    configure_logging(config.logging)
    return config


def _region(value: Optional[str], config: AppConfig) -> Region:
    if value is None:
        return config.reactivity.region
    try:
        return Region.parse(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--region") from exc


def _format_percent(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:+.1%}"


@app.command("init-db")
def init_db(config: Optional[Path] = ConfigOption) -> None:
    """Create the database schema."""

    settings = _initialise(config)

    async def _run() -> None:
        engine = await create_engine_with_retries(settings.database)
        try:
            await init_schema(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())
    rprint(f"[green]Schema ready at {settings.database.url}[/green]")


@app.command("artist-metrics")
def artist_metrics(
    url: str = typer.Argument(..., help="Artist URL or external id"),
    region: Optional[str] = typer.Option(None, help="Region (US or GLOBAL)"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Show weekly streaming totals for an artist."""

    settings = _initialise(config)
    selected = _region(region, settings)

    async def _run():
        async with open_engine(settings) as engine:
            return await engine.get_artist_metrics(url, selected)

    result = asyncio.run(_run())
    if result is None:
        rprint(f"[yellow]No catalog account found for {url}[/yellow]")
        raise typer.Exit(code=1)

    entry = result.metrics
    label = "cached" if result.from_cache else "fresh"
    if result.stale:
        label = "stale"
    rprint(f"[bold]{result.identity.display_name or result.identity.external_id}[/bold] ({selected.value}, {label})")
    rprint(f"  this week: {entry.this_week:,.0f}")
    rprint(f"  last week: {entry.last_week:,.0f}")
    rprint(f"  change:    {_format_percent(entry.percent_change)}")


@app.command("song-reactivity")
def song_reactivity(
    artist_id: int = typer.Argument(..., help="Tracked artist id"),
    song_id: int = typer.Argument(..., help="Unified song id"),
    region: Optional[str] = typer.Option(None, help="Region (US or GLOBAL)"),
    start: Optional[dt.datetime] = typer.Option(None, formats=["%Y-%m-%d"], help="Start date"),
    end: Optional[dt.datetime] = typer.Option(None, formats=["%Y-%m-%d"], help="End date"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Score how closely a song's streams track its social activity."""

    settings = _initialise(config)
    selected = _region(region, settings)
    default_start, default_end = calculation_window(settings.reactivity.window_months)
    start_date = start.date() if start else default_start
    end_date = end.date() if end else default_end
    if end_date < start_date:
        raise typer.BadParameter("end date precedes start date", param_hint="--end")

    async def _run():
        async with open_engine(settings) as engine:
            return await engine.get_song_reactivity(artist_id, song_id, selected, start_date, end_date)

    result = asyncio.run(_run())
    correlation = "n/a" if result.correlation is None else f"{result.correlation:.3f}"
    rprint(
        f"Song {song_id} ({selected.value}, {start_date} to {end_date}): "
        f"grade [bold]{result.grade.value}[/bold], correlation {correlation}, "
        f"{result.paired_samples} paired days"
    )


@app.command("run-batch")
def run_batch(config: Optional[Path] = ConfigOption) -> None:
    """Recompute and store reactivity scores for every tracked artist."""

    settings = _initialise(config)

    async def _run():
        async with open_engine(settings) as engine:
            return await engine.run_reactivity_batch()

    summary = asyncio.run(_run())
    colour = "green" if summary.errors == 0 else "yellow"
    rprint(
        f"[{colour}]Processed {summary.processed} song(s) across {summary.artists} artist(s); "
        f"{summary.errors} error(s), {summary.skipped} skipped in {summary.elapsed_seconds:.2f}s[/{colour}]"
    )


@app.command("top-reactive")
def top_reactive(
    limit: int = typer.Option(DEFAULT_TOP_LIMIT, min=1, help="Number of songs to show"),
    region: Optional[str] = typer.Option(None, help="Region (US or GLOBAL)"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """List the most reactive stored songs."""

    settings = _initialise(config)
    selected = _region(region, settings)

    async def _run():
        async with open_engine(settings) as engine:
            return await engine.get_top_reactive_songs(limit, selected)

    rows = asyncio.run(_run())
    if not rows:
        rprint(f"[yellow]No scored songs for region {selected.value}[/yellow]")
        return

    table = Table(title=f"Top reactive songs ({selected.value})")
    for column in ("Rank", "Song", "Artist", "Correlation", "Grade"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            str(row.rank),
            row.song_name or str(row.unified_song_id),
            row.artist_name or str(row.artist_id),
            "n/a" if row.correlation is None else f"{row.correlation:.3f}",
            row.grade.value,
        )
    rprint(table)


def main() -> None:
    app()


__all__ = ["app", "main"]
