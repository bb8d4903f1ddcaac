#!/usr/bin/env python3
"""orbitrack command-line interface.

Usage::

    orbitrack catalog --category constellation --max-alt 600 --cap 20
    orbitrack catalog --tle-file data/active.tle --output view.csv
    orbitrack track --tle-file data/stations.tle --cycles 3 --interval 5
    orbitrack propagate --line1 "1 25544U ..." --line2 "2 25544 ..."
"""
from __future__ import annotations

import asyncio
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import TrackerConfig
from .errors import PropagationError
from .filtering import build_catalog_frame
from .models import Category, LifecycleStatus, TrackedObject
from .propagator import propagate_strict
from .sources import StaticSource, build_sources, load_tle_file
from .store import ErrorDescriptor
from .tle_parser import TLE
from .tracker import Tracker

console = Console()

_SECRET = re.compile(r"((?:password|passwd|token|secret|api[_-]?key)\s*[=:]\s*)([^\s&,;]+)", re.I)


class RedactingFilter(logging.Filter):
    """Mask credential values before log records are emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET.sub(r"\1***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """orbitrack — real-time orbital tracking and filtering."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s — %(message)s")
    for handler in logging.getLogger().handlers:
        handler.addFilter(RedactingFilter())


def _criteria_options(fn):
    options = [
        click.option("--category", "-c", "categories", multiple=True,
                     type=click.Choice([c.value for c in Category]),
                     help="Allowed category (repeatable)"),
        click.option("--country", "countries", multiple=True, help="Allowed country (repeatable)"),
        click.option("--operator", "operators", multiple=True, help="Allowed operator (repeatable)"),
        click.option("--status", "statuses", multiple=True,
                     type=click.Choice([s.value for s in LifecycleStatus]),
                     help="Allowed lifecycle status (repeatable)"),
        click.option("--min-alt", type=float, default=None, help="Minimum altitude (km)"),
        click.option("--max-alt", type=float, default=None, help="Maximum altitude (km)"),
        click.option("--search", "-s", default="", help="Case-insensitive text search"),
        click.option("--cap", default=None, type=int, help="Maximum objects shown"),
        click.option("--tle-file", type=click.Path(exists=True),
                     help="Read elements from a local TLE file instead of the network"),
        click.option("--low-power", is_flag=True, help="Use the low-power preset"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@main.command()
@_criteria_options
@click.option("--output", "-o", type=click.Path(), help="Save the filtered view to CSV")
def catalog(output: Optional[str], **opts):
    """Fetch the catalog and print the filtered view."""
    tracker = _build_tracker(opts)

    with console.status("Fetching catalog..."):
        loaded = asyncio.run(tracker.load_catalog())
    if not loaded:
        _display_error(tracker.store.last_error)
        sys.exit(1)

    _apply_options(tracker, opts)
    store = tracker.store
    console.print(
        Panel(
            f"Catalog: [bold]{len(store.catalog)}[/bold] objects\n"
            f"Matching view: [bold green]{len(store.view)}[/bold green] "
            f"(cap {store.display_cap})",
            title="Catalog",
            box=box.ROUNDED,
        )
    )
    _display_view(store.view)

    if output:
        build_catalog_frame(store.view).to_csv(output, index=False)
        console.print(f"\nView saved to {output}")


@main.command()
@_criteria_options
@click.option("--cycles", "-n", default=3, help="Update cycles to run")
@click.option("--interval", "-i", default=None, type=float, help="Seconds between cycles")
@click.option("--batch-size", "-b", default=None, type=int, help="Objects per batch")
def track(cycles: int, interval: Optional[float], batch_size: Optional[int], **opts):
    """Load the catalog and follow positions for a few update cycles."""
    overrides = {}
    if interval is not None:
        overrides["update_interval_s"] = interval
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    tracker = _build_tracker(opts, **overrides)

    async def run() -> bool:
        if not await tracker.load_catalog():
            return False
        _apply_options(tracker, opts)
        scheduler = tracker.scheduler
        for n in range(1, cycles + 1):
            report = await scheduler.run_cycle()
            console.print(
                f"[cyan]Cycle {n}[/cyan]: {report.updated} updated, "
                f"{report.failed} failed, batches {report.batch_sizes}"
            )
            _display_view(tracker.store.view, limit=10)
            if n < cycles:
                await asyncio.sleep(scheduler.interval)
        return True

    if not asyncio.run(run()):
        _display_error(tracker.store.last_error)
        sys.exit(1)


@main.command()
@click.option("--line1", help="TLE line 1")
@click.option("--line2", help="TLE line 2")
@click.option("--file", "-f", "filepath", type=click.Path(exists=True),
              help="TLE file; every entry is propagated")
@click.option("--at", "at_text", default=None, help="ISO-8601 UTC time (default: now)")
def propagate(line1: Optional[str], line2: Optional[str], filepath: Optional[str],
              at_text: Optional[str]):
    """Propagate element sets to a single instant."""
    at = datetime.fromisoformat(at_text) if at_text else datetime.now(timezone.utc)
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)

    if filepath:
        tles = load_tle_file(filepath)
    elif line1 and line2:
        try:
            tles = [TLE.parse(line1, line2)]
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
    else:
        console.print("[red]Error: provide --line1/--line2 or --file[/red]")
        sys.exit(1)

    table = Table(title=f"Positions at {at:%Y-%m-%d %H:%M:%S} UTC", box=box.SIMPLE_HEAVY)
    table.add_column("NORAD", justify="right")
    table.add_column("Name")
    table.add_column("Lat (°)", justify="right")
    table.add_column("Lon (°)", justify="right")
    table.add_column("Alt (km)", justify="right")
    table.add_column("Vel (km/s)", justify="right")
    table.add_column("Heading (°)", justify="right")

    for tle in tles:
        try:
            r = propagate_strict(tle.elements, at)
        except PropagationError as e:
            table.add_row(str(tle.norad_id), tle.name or "", f"[red]{e}[/red]", "", "", "", "")
            continue
        table.add_row(
            str(tle.norad_id),
            tle.name or "",
            f"{r.latitude:.3f}",
            f"{r.longitude:.3f}",
            f"{r.altitude_km:.1f}",
            f"{r.velocity_km_s:.3f}",
            f"{r.heading_deg:.1f}",
        )
    console.print(table)


# ── Private helpers ──


def _build_tracker(opts: dict, **overrides) -> Tracker:
    base = TrackerConfig.for_low_power() if opts.get("low_power") else TrackerConfig.from_env()
    if opts.get("cap") is not None:
        overrides["display_cap"] = max(base.min_display_cap, min(opts["cap"], base.max_display_cap))
    config = base.with_overrides(**overrides)

    if opts.get("tle_file"):
        sources = [StaticSource(path=opts["tle_file"], name="tle-file")]
    else:
        sources = build_sources(
            config.source_priority,
            min_delay=config.rate_limit_delay_s,
            timeout=config.request_timeout_s,
            progress=True,
        )
    return Tracker(config, sources=sources)


def _apply_options(tracker: Tracker, opts: dict) -> None:
    tracker.store.update_criteria(
        categories=opts.get("categories") or (),
        countries=opts.get("countries") or (),
        operators=opts.get("operators") or (),
        statuses=opts.get("statuses") or (),
        altitude_range=(opts.get("min_alt"), opts.get("max_alt")),
        search=opts.get("search") or "",
    )
    if opts.get("cap") is not None:
        tracker.store.set_display_cap(opts["cap"])


def _display_view(view: tuple[TrackedObject, ...], limit: int = 50):
    """Display the filtered view as a rich table."""
    table = Table(box=box.SIMPLE_HEAVY)
    table.add_column("NORAD", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("Category", style="bold")
    table.add_column("Operator")
    table.add_column("Country")
    table.add_column("Alt (km)", justify="right")
    table.add_column("Lat (°)", justify="right")
    table.add_column("Lon (°)", justify="right")
    table.add_column("Vel (km/s)", justify="right")

    for obj in view[:limit]:
        p = obj.position
        table.add_row(
            obj.id,
            obj.name,
            obj.category.value,
            obj.metadata.operator,
            obj.metadata.country,
            f"{p.altitude_km:.1f}",
            f"{p.latitude:.2f}",
            f"{p.longitude:.2f}",
            f"{p.velocity_km_s:.2f}",
        )

    if len(view) > limit:
        console.print(f"(showing {limit} of {len(view)} objects)")
    console.print(table)


def _display_error(error: Optional[ErrorDescriptor]):
    if error is None:
        console.print("[red]Catalog load failed[/red]")
        return
    hint = " (retryable)" if error.retryable else ""
    console.print(
        Panel(
            f"[bold red]{error.kind}[/bold red]{hint}\n{error.message}",
            title="Error",
            box=box.ROUNDED,
        )
    )


if __name__ == "__main__":
    main()
