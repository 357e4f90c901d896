"""Main entry point for boz-series."""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from boz_series import __version__
from boz_series.core.config import Settings
from boz_series.core.logging import configure_logging
from boz_series.database import Database
from boz_series.services.confirmation import ConsoleConfirmer
from boz_series.services.continuity import ContinuityCoordinator
from boz_series.services.episode_metadata import EpisodeMetadataService
from boz_series.services.identification import MediaIdentifier
from boz_series.services.makemkv import MakeMKVService
from boz_series.services.media_namer import MediaNamer
from boz_series.services.omdb_client import OMDbClient
from boz_series.services.pattern_learning import PatternLearner
from boz_series.services.runtime import DiscProcessor, Ripper
from boz_series.services.season_cache import SeasonInfoCache
from boz_series.services.state_store import SeriesStateStore

app = typer.Typer(
    name="boz-series",
    help="Boz Series - Disc-by-disc TV series ripping with episode continuity",
)
console = Console()
logger = structlog.get_logger()

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to configuration file")


def load_settings(config_path: Optional[Path]) -> Settings:
    """Load settings from file or defaults."""
    if config_path and config_path.exists():
        logger.info("loading_config", path=str(config_path))
        return Settings.from_yaml(config_path)

    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path.home() / ".boz-series" / "config.yaml",
    ]

    for path in default_paths:
        if path.exists():
            logger.info("loading_config", path=str(path))
            return Settings.from_yaml(path)

    logger.info("using_default_config")
    return Settings()


def build_store(settings: Settings) -> SeriesStateStore:
    return SeriesStateStore(
        settings.state.state_dir,
        default_sorting_strategy=settings.continuity.default_sorting_strategy,
        default_double_handling=settings.continuity.default_double_handling,
    )


async def run_ripper(settings: Settings) -> None:
    """Wire the services together and poll until interrupted."""
    store = build_store(settings)
    database = Database(settings.state.resolved_season_cache_url())
    omdb = OMDbClient(settings.omdb)
    season_cache = SeasonInfoCache(database, settings.state.season_cache_days)
    metadata = EpisodeMetadataService(omdb, season_cache) if omdb.enabled else None
    confirmer = ConsoleConfirmer(console)

    coordinator = ContinuityCoordinator(
        store,
        PatternLearner(store),
        confirmer,
        metadata=metadata,
        settings=settings.continuity,
    )
    makemkv = MakeMKVService(settings.makemkv)
    processor = DiscProcessor(
        settings,
        makemkv,
        MediaIdentifier(store, omdb, confirmer),
        coordinator,
        MediaNamer(settings.library),
        metadata=metadata,
    )
    ripper = Ripper(settings, makemkv, processor)

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, ripper.stop)
        loop.add_signal_handler(signal.SIGTERM, ripper.stop)

    try:
        await season_cache.clear_expired()
        await ripper.run()
    finally:
        await omdb.close()
        await database.close()


async def forget_cached_seasons(settings: Settings, series: str) -> int:
    database = Database(settings.state.resolved_season_cache_url())
    try:
        return await SeasonInfoCache(database, settings.state.season_cache_days).forget_series(series)
    finally:
        await database.close()


@app.command()
def run(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Watch the drives and rip inserted discs."""
    settings = load_settings(config)
    configure_logging(settings.logging)
    try:
        asyncio.run(run_ripper(settings))
    except KeyboardInterrupt:
        pass


@app.command()
def status(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Show the continuity state of every known series."""
    settings = load_settings(config)
    states = build_store(settings).all_states()

    if not states:
        console.print("No series processed yet.")
        return

    table = Table(title="Series")
    table.add_column("Series")
    table.add_column("Next", justify="right")
    table.add_column("Discs", justify="right")
    table.add_column("Sorting")
    table.add_column("Auto-increment")
    table.add_column("Updated")

    for state in states:
        if state.auto_increment_preference is None:
            auto = "-"
        else:
            auto = "yes" if state.auto_increment_preference else "no"
        table.add_row(
            state.series_title,
            f"S{state.current_season:02d}E{state.next_episode:02d}",
            str(len(state.processed_discs)),
            state.track_sorting_strategy.value,
            auto,
            state.updated_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def forget(
    series: str = typer.Argument(..., help="Series title"),
    config: Optional[Path] = CONFIG_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a series' state, including learned patterns."""
    settings = load_settings(config)
    store = build_store(settings)

    if store.get_existing(series) is None:
        console.print(f"[red][X][/red] Unknown series: {series}")
        raise typer.Exit(code=1)

    if not yes and not typer.confirm(f"Forget everything about '{series}'?"):
        raise typer.Abort()

    store.delete(series)
    cached = asyncio.run(forget_cached_seasons(settings, series))
    console.print(f"[green][OK][/green] Forgot {series} ({cached} cached seasons removed)")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Boz Series v{__version__}")


@app.command()
def check(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Check system requirements and configuration."""
    console.print("[bold]Boz Series - System Check[/bold]\n")

    settings = load_settings(config)

    makemkv = MakeMKVService(settings.makemkv)
    if makemkv.is_available():
        console.print(f"[green][OK][/green] MakeMKV found: {settings.makemkv.executable}")
    else:
        console.print(f"[red][X][/red] MakeMKV not found: {settings.makemkv.executable}")

    if settings.omdb.api_key:
        console.print("[green][OK][/green] OMDb API key configured")
    else:
        console.print("[yellow][!][/yellow] OMDb API key missing")
        console.print("  (Discs will be identified manually)")

    state_dir = Path(settings.state.state_dir)
    if state_dir.exists():
        console.print(f"[green][OK][/green] State directory exists: {state_dir}")
    else:
        console.print(f"[yellow][!][/yellow] State directory missing: {state_dir}")
        console.print("  (Will be created on first disc)")

    output_dir = Path(settings.library.output_dir)
    if output_dir.exists():
        console.print(f"[green][OK][/green] Library directory exists: {output_dir}")
    else:
        console.print(f"[yellow][!][/yellow] Library directory missing: {output_dir}")


if __name__ == "__main__":
    app()
