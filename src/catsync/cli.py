"""Catsync CLI entry point."""

from __future__ import annotations

import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import click

from catsync import __version__
from catsync.config import load_config
from catsync.errors import CatsyncError, ConfigError, TooManyResultsError
from catsync.infrastructure.catalog_db import open_catalog
from catsync.search.client import connect_search

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Iterator

    from catsync.config import Config
    from catsync.reconcile.driver import SweepResult
    from catsync.search.client import SearchClient

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


@click.group()
@click.version_option(version=__version__, prog_name="catsync")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("catsync.yml"),
    envvar="CATSYNC_CONFIG",
    show_default=True,
    help="YAML configuration file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, config_path: Path, verbose: bool, quiet: bool) -> None:
    """Catsync - reconcile a search index with the file catalog."""
    _configure_logging(verbose=verbose, quiet=quiet)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _load(ctx: click.Context) -> Config:
    config_path: Path = ctx.obj["config_path"]
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@contextmanager
def _connections(config: Config) -> Iterator[tuple[sqlite3.Connection, SearchClient]]:
    catalog_path = Path(config.catalog.path)
    if not catalog_path.is_file():
        click.echo(f"Error: catalog database not found: {catalog_path}", err=True)
        sys.exit(1)

    try:
        catalog = open_catalog(catalog_path)
    except CatsyncError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    try:
        try:
            client = connect_search(config.search)
        except CatsyncError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)
        try:
            yield catalog, client
        finally:
            client.close()
    finally:
        catalog.close()


def _print_sweep(result: SweepResult) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    totals = result.totals

    table = Table(title="Sweep", show_header=True)
    table.add_column("category", style="cyan")
    table.add_column("seen", justify="right")
    table.add_column("added", justify="right", style="green")
    table.add_column("updated", justify="right", style="yellow")
    table.add_column("removed", justify="right", style="red")
    table.add_row(
        "files",
        str(totals.dataobjects),
        str(totals.dataobjects_added),
        str(totals.dataobjects_updated),
        str(totals.dataobjects_removed),
    )
    table.add_row(
        "folders",
        str(totals.colls),
        str(totals.colls_added),
        str(totals.colls_updated),
        str(totals.colls_removed),
    )
    console.print(table)
    console.print(
        f"  Passes: [bold]{result.passes}[/]   "
        f"Subdivided: [bold]{len(result.subdivided)}[/]   "
        f"Operations: [bold]{totals.operations}[/]   "
        f"Failed: [bold]{len(result.failed)}[/]"
    )
    for prefix, reason in result.failed.items():
        console.print(f"  [red][ERR][/] {prefix}: {reason}")


@main.command()
@click.argument("prefixes", nargs=-1, required=True)
@click.pass_context
def prefix(ctx: click.Context, prefixes: tuple[str, ...]) -> None:
    """Reconcile the given UUID prefixes, one pass each."""
    from catsync.reconcile.orchestrator import reindex_prefix

    config = _load(ctx)
    exit_code = 0
    with _connections(config) as (catalog, client):
        for value in (p.lower() for p in prefixes):
            try:
                stats = reindex_prefix(catalog, client, value, config)
            except TooManyResultsError as exc:
                click.echo(f"  [ERR] {exc}", err=True)
                exit_code = max(exit_code, 2)
                continue
            except CatsyncError as exc:
                click.echo(f"  [ERR] {value}: {exc}", err=True)
                exit_code = max(exit_code, 1)
                continue
            click.echo(
                f"{value}: files +{stats.dataobjects_added} U{stats.dataobjects_updated} "
                f"-{stats.dataobjects_removed}, folders +{stats.colls_added} "
                f"U{stats.colls_updated} -{stats.colls_removed}"
            )
    if exit_code:
        sys.exit(exit_code)


@main.command()
@click.pass_context
def full(ctx: click.Context) -> None:
    """Sweep the whole UUID space once."""
    from catsync.reconcile.driver import reindex_all

    config = _load(ctx)
    with _connections(config) as (catalog, client):
        result = reindex_all(catalog, client, config)
    _print_sweep(result)
    if not result.ok:
        sys.exit(1)


@main.command()
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between sweeps (default: reindex.interval from config).",
)
@click.option("--once", is_flag=True, help="Stop after the first sweep.")
@click.pass_context
def periodic(ctx: click.Context, *, interval: float | None, once: bool) -> None:
    """Sweep the whole UUID space repeatedly."""
    from catsync.reconcile.driver import reindex_all

    config = _load(ctx)
    wait = config.reindex.interval if interval is None else interval
    with _connections(config) as (catalog, client):
        while True:
            started = time.monotonic()
            result = reindex_all(catalog, client, config)
            _print_sweep(result)
            if once:
                break
            remaining = max(0.0, wait - (time.monotonic() - started))
            logger.info("Next sweep in %.0fs", remaining)
            time.sleep(remaining)
