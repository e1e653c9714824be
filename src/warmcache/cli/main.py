"""
CLI for the cache subsystem.

Commands:
    warmcache stats - Show durable cache entries by class
    warmcache cleanup - Delete expired, stale or corrupt entries
    warmcache invalidate PATTERN - Delete entries whose storage key matches
    warmcache classify URL - Show which response cache class a URL uses
    warmcache config - Show current configuration
    warmcache version - Print version
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from typing import Annotated, TypeVar

import orjson
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from warmcache import __version__
from warmcache.cache.kv_cache import SqliteMedium
from warmcache.cache.memory import MemoryMedium
from warmcache.cache.store import StoreStats, TieredStore
from warmcache.config import Settings, clear_settings_cache, get_settings
from warmcache.interceptor.rules import RequestClassifier, build_default_rules
from warmcache.logging import setup_logging

app = typer.Typer(
    name="warmcache",
    help="Tiered client cache - inspect and maintain the durable cache",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

T = TypeVar("T")


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError:
        return None


def _require_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'warmcache config' to see what's wrong."
        )
        raise typer.Exit(1)
    setup_logging(log_level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)
    return settings


def _open_store(settings: Settings) -> TieredStore:
    return TieredStore(
        SqliteMedium(settings.CACHE_DB_PATH), MemoryMedium(), prefix=settings.CACHE_PREFIX
    )


async def _with_store(
    settings: Settings, operation: Callable[[TieredStore], Awaitable[T]]
) -> T:
    store = _open_store(settings)
    await store.durable.open()
    try:
        return await operation(store)
    finally:
        await store.durable.close()


@app.command()
def stats(
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print stats as JSON"),
    ] = False,
) -> None:
    """Show durable cache entry counts and size by class."""
    settings = _require_settings()
    if not settings.CACHE_DB_PATH.exists():
        console.print(f"[yellow]No cache database at {settings.CACHE_DB_PATH}[/yellow]")
        raise typer.Exit(0)

    result: StoreStats = asyncio.run(_with_store(settings, lambda store: store.stats()))

    if as_json:
        console.print_json(orjson.dumps(result.to_dict()).decode("utf-8"))
        return

    table = Table(title="Cache Entries", show_header=True)
    table.add_column("Class", style="cyan")
    table.add_column("Entries", style="green", justify="right")
    for class_name, count in sorted(result.by_class.items()):
        table.add_row(class_name, str(count))
    console.print(table)
    console.print(
        f"[bold]Total:[/bold] {result.total_entries} entries, {result.total_size} bytes"
    )


@app.command()
def cleanup() -> None:
    """Delete every expired, version-stale or undecodable entry."""
    settings = _require_settings()
    if not settings.CACHE_DB_PATH.exists():
        console.print("[dim]Nothing to clean up.[/dim]")
        raise typer.Exit(0)

    removed = asyncio.run(_with_store(settings, lambda store: store.cleanup()))
    console.print(f"[green]Removed {removed} entries[/green]")


@app.command()
def invalidate(
    pattern: Annotated[str, typer.Argument(help="Regular expression matched against storage keys")],
) -> None:
    """Delete entries whose storage key matches PATTERN."""
    try:
        regex = re.compile(pattern)
    except re.error as e:
        error_console.print(f"[red]Error:[/red] Invalid pattern: {e}")
        raise typer.Exit(1)

    settings = _require_settings()
    if not settings.CACHE_DB_PATH.exists():
        console.print("[dim]Nothing to invalidate.[/dim]")
        raise typer.Exit(0)

    removed = asyncio.run(_with_store(settings, lambda store: store.invalidate_pattern(regex)))
    console.print(f"[green]Invalidated {removed} entries matching[/green] {pattern}")


@app.command()
def classify(
    url: Annotated[str, typer.Argument(help="Absolute or origin-relative URL")],
) -> None:
    """Show the rule, response cache class and strategy for URL."""
    settings = _require_settings()
    classifier = RequestClassifier(
        settings.APP_ORIGIN,
        rules=build_default_rules(
            reference_hosts=settings.REFERENCE_API_HOSTS,
            data_hosts=settings.DATA_API_HOSTS,
            app_route_prefixes=settings.APP_ROUTE_PREFIXES,
        ),
    )
    result = classifier.classify(url)
    config = classifier.config_for(result.resource_class)

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("URL", classifier.absolute(url))
    table.add_row("Rule", result.rule_name)
    table.add_row("Class", result.resource_class.value)
    table.add_row("Strategy", result.strategy.value)
    table.add_row("Max age", f"{config.max_age_ms // 1000}s")
    table.add_row("Max entries", str(config.max_entries))
    console.print(table)


@app.command()
def config() -> None:
    """Show current configuration."""
    console.print()
    console.print("[bold]Cache Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print()
        error_console.print("Check these environment variables:")
        error_console.print("  - APP_ORIGIN (must start with http:// or https://)")
        error_console.print("  - IDLE_POLL_MAX_MS (must be >= IDLE_POLL_MS)")
        error_console.print()
        error_console.print("Create a .env file or set environment variables.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"warmcache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
