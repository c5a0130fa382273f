#!/usr/bin/env python3
"""
Command line interface for timesift.

Usage:
    tsift search "query" --data records.json   - Search a record snapshot
    tsift parse "query"                         - Show how a query is parsed
    tsift validate "query"                      - Check query syntax
    tsift suggest "partial" --data records.json - Suggest completions
    tsift stats --data records.json             - Index statistics
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

from ..daemon.config import Config
from ..daemon.models import SearchFilters, SearchResults
from ..daemon.query_parser import QueryParser, describe, parse_duration
from ..daemon.search import SearchService
from ..daemon.store import InMemoryRecordStore

console = Console()


def _load_config(config_path: Optional[str]) -> Config:
    return Config.load_or_default(Path(config_path) if config_path else None)


def _resolve_data(data: Optional[str], config: Config) -> Path:
    if data:
        return Path(data)
    if config.data_path:
        return config.data_path
    raise click.UsageError("No record snapshot given. Use --data or set data_path in the config.")


async def _open_service(data_path: Path, config: Config) -> SearchService:
    store = InMemoryRecordStore.from_json(data_path)
    service = SearchService(store, config=config)
    await service.rebuild_index()
    return service


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="Config file")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, config_path: Optional[str], verbose: bool):
    """timesift - search your tracked time."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")
    ctx.ensure_object(dict)
    ctx.obj["config"] = _load_config(config_path)


@cli.command()
@click.argument("query", default="")
@click.option("--data", "-d", type=click.Path(exists=True, dir_okay=False), help="Record snapshot (JSON)")
@click.option("--app", "-a", "apps", multiple=True, help="Only these app names")
@click.option("--project", "-p", "projects", multiple=True, help="Only these project ids")
@click.option("--after", help="Start date (any query date format)")
@click.option("--before", help="End date (any query date format)")
@click.option("--min-duration", help="Minimum duration, e.g. 30m")
@click.option("--max-duration", help="Maximum duration, e.g. 2h")
@click.option("--exclude-idle", is_flag=True, help="Skip idle activities")
@click.option("--limit", "-l", default=10, help="Max results per kind")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def search(
    ctx,
    query: str,
    data: Optional[str],
    apps: Tuple[str, ...],
    projects: Tuple[str, ...],
    after: Optional[str],
    before: Optional[str],
    min_duration: Optional[str],
    max_duration: Optional[str],
    exclude_idle: bool,
    limit: int,
    as_json: bool
):
    """Search activities, time entries and projects."""
    config = ctx.obj["config"]
    data_path = _resolve_data(data, config)
    filters = SearchFilters(
        start_date=_option_date(after, "--after"),
        end_date=_option_date(before, "--before"),
        selected_apps=frozenset(apps),
        selected_projects=frozenset(projects),
        min_duration=_option_duration(min_duration, "--min-duration"),
        max_duration=_option_duration(max_duration, "--max-duration"),
        exclude_idle_time=exclude_idle,
    )

    results = asyncio.run(run_search(data_path, config, query, filters))

    if as_json:
        click.echo(json.dumps(results.to_dict(), indent=2))
        return
    display_search_results(results, limit)
    if results.error:
        sys.exit(1)


async def run_search(data_path: Path, config: Config, query: str, filters: SearchFilters) -> SearchResults:
    service = await _open_service(data_path, config)
    service.filters = filters
    results = await service.search_immediate(query)
    return results or SearchResults()


def _option_date(value: Optional[str], name: str):
    if value is None:
        return None
    parsed = QueryParser().parse_date(value)
    if parsed is None:
        raise click.BadParameter(f"Unrecognized date: {value}", param_hint=name)
    return parsed


def _option_duration(value: Optional[str], name: str) -> Optional[float]:
    if value is None:
        return None
    seconds = parse_duration(value)
    if seconds is None:
        raise click.BadParameter(f"Unrecognized duration: {value}", param_hint=name)
    return seconds


def _format_duration(seconds: float) -> str:
    minutes = int(seconds // 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m" if hours else f"{minutes}m"


def display_search_results(results: SearchResults, limit: int):
    """Display search results as one table per record kind."""
    if results.error:
        console.print(f"[red]Search failed:[/red] {results.error}")
        return

    if results.is_empty:
        console.print("[yellow]No results found[/yellow]")
        return

    if results.activities:
        table = Table(title=f"Activities ({len(results.activities)})")
        table.add_column("App", style="cyan")
        table.add_column("Window", no_wrap=False)
        table.add_column("Start", style="magenta")
        table.add_column("Duration", justify="right")
        table.add_column("Score", justify="right")
        for r in results.activities[:limit]:
            a = r.activity
            table.add_row(
                a.app_name,
                a.window_title or "",
                a.start_time.strftime("%Y-%m-%d %H:%M"),
                _format_duration(a.duration()),
                f"{r.relevance_score:.1f}"
            )
        console.print(table)

    if results.time_entries:
        table = Table(title=f"Time entries ({len(results.time_entries)})")
        table.add_column("Title", style="cyan")
        table.add_column("Start", style="magenta")
        table.add_column("Duration", justify="right")
        table.add_column("Score", justify="right")
        for r in results.time_entries[:limit]:
            e = r.time_entry
            table.add_row(
                e.title,
                e.start_time.strftime("%Y-%m-%d %H:%M"),
                _format_duration(e.duration()),
                f"{r.relevance_score:.1f}"
            )
        console.print(table)

    if results.projects:
        table = Table(title=f"Projects ({len(results.projects)})")
        table.add_column("Name", style="cyan")
        table.add_column("Score", justify="right")
        for r in results.projects[:limit]:
            table.add_row(r.project.name, f"{r.relevance_score:.1f}")
        console.print(table)

    console.print(
        f"[dim]{results.total_count} results, path={results.path}, "
        f"complexity={results.complexity}[/dim]"
    )


@cli.command()
@click.argument("query")
def parse(query: str):
    """Show how a query is parsed."""
    rows = describe(QueryParser().parse(query))
    if not rows:
        console.print("[yellow]Nothing to parse[/yellow]")
        return

    table = Table(title="Parsed query")
    table.add_column("Kind", style="cyan")
    table.add_column("Value")
    for kind, value in rows:
        style = "red" if kind == "problem" else None
        table.add_row(kind, value, style=style)
    console.print(table)


@cli.command()
@click.argument("query")
def validate(query: str):
    """Check query syntax."""
    verdict = QueryParser().validate(query)
    if verdict.is_valid:
        console.print("[green]✓[/green] Valid query")
    else:
        console.print(f"[red]✗[/red] {verdict.error_message}")
        sys.exit(1)


@cli.command()
@click.argument("partial")
@click.option("--data", "-d", type=click.Path(exists=True, dir_okay=False), help="Record snapshot (JSON)")
@click.pass_context
def suggest(ctx, partial: str, data: Optional[str]):
    """Suggest completions for a partial query."""
    config = ctx.obj["config"]
    suggestions = asyncio.run(run_suggest(_resolve_data(data, config), config, partial))

    if not suggestions:
        console.print("[yellow]No suggestions[/yellow]")
        return
    for s in suggestions:
        console.print(f"  • {s.text} [dim]({s.type.value})[/dim]")


async def run_suggest(data_path: Path, config: Config, partial: str):
    service = await _open_service(data_path, config)
    return service.get_suggestions(partial)


@cli.command()
@click.option("--data", "-d", type=click.Path(exists=True, dir_okay=False), help="Record snapshot (JSON)")
@click.pass_context
def stats(ctx, data: Optional[str]):
    """Show index statistics and common terms."""
    config = ctx.obj["config"]
    service = asyncio.run(_open_service(_resolve_data(data, config), config))
    statistics = service.index_statistics()

    table = Table(title="Index statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Activities", str(statistics.activities_count))
    table.add_row("Time entries", str(statistics.time_entries_count))
    table.add_row("Projects", str(statistics.projects_count))
    table.add_row("Terms", str(statistics.total_terms))
    console.print(table)

    terms = service.common_terms()
    if terms:
        console.print(f"[bold]Common terms:[/bold] {', '.join(terms)}")


if __name__ == "__main__":
    cli()
