"""Inspection CLI for the observability store."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import click
import typer
from rich.console import Console
from rich.table import Table

from constellation_observability.config import ObservabilityConfig
from constellation_observability.errors import ObservabilityError
from constellation_observability.identity import resolve_machine_id
from constellation_observability.models import Event
from constellation_observability.query import EventQuery
from constellation_observability.stats import (
    GROUP_BY_CHOICES,
    MetricSummary,
    causal_chain,
    metric_summary,
)
from constellation_observability.store import DB_FILENAME, EventStore

app = typer.Typer(
    name="constellation-obs",
    help="Inspect the constellation observability event store.",
    no_args_is_help=True,
)

console = Console()

DataDirOption = typer.Option(
    None,
    "--data-dir",
    "-d",
    help="Observability data directory (default: config or ./data)",
)


def _resolve_data_dir(data_dir: Path | None) -> Path:
    if data_dir is not None:
        return data_dir
    try:
        return ObservabilityConfig.load().data_dir
    except ObservabilityError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from None


def _open_store(data_dir: Path | None) -> EventStore | None:
    """Open the store read-side; None when no database exists yet."""
    resolved = _resolve_data_dir(data_dir)
    if not (resolved / DB_FILENAME).exists():
        return None
    try:
        return EventStore.initialize(resolved)
    except ObservabilityError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from None


def _parse_ts(value: str | None, flag: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        console.print(f"[red]Error:[/red] Invalid {flag} value: {exc}")
        console.print("Expected ISO 8601 (e.g. 2026-01-01 or 2026-01-01T00:00:00Z)")
        raise typer.Exit(code=1) from None


def _print_events_table(events: list[Event], title: str) -> None:
    table = Table(title=title)
    table.add_column("Timestamp", style="dim")
    table.add_column("Event ID")
    table.add_column("Kind", style="cyan")
    table.add_column("Session")
    table.add_column("Component")
    table.add_column("Parent", style="dim")

    for event in events:
        table.add_row(
            event.ts,
            event.event_id,
            event.kind,
            event.context.session_id or "",
            event.source.component,
            event.parent.event_id or "",
        )

    console.print(table)


@app.command("events")
def events_cmd(
    data_dir: Path | None = DataDirOption,
    kind: str | None = typer.Option(None, "--kind", "-k", help="Filter by event kind"),
    session_id: str | None = typer.Option(None, "--session", "-s", help="Filter by session id"),
    machine_id: str | None = typer.Option(None, "--machine", help="Filter by machine id"),
    trace_id: str | None = typer.Option(None, "--trace", help="Filter by trace id"),
    since: str | None = typer.Option(None, "--since", help="Start timestamp (ISO 8601, inclusive)"),
    until: str | None = typer.Option(None, "--until", help="End timestamp (ISO 8601, inclusive)"),
    limit: int = typer.Option(50, "--limit", "-n", min=0, help="Maximum events to show"),
    offset: int = typer.Option(0, "--offset", min=0, help="Events to skip"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List events, most recent first."""
    query = EventQuery(
        kind=kind,
        session_id=session_id,
        machine_id=machine_id,
        trace_id=trace_id,
        start_ts=_parse_ts(since, "--since"),
        end_ts=_parse_ts(until, "--until"),
        limit=limit,
        offset=offset,
    )

    store = _open_store(data_dir)
    if store is None:
        console.print("No events found.")
        raise typer.Exit(code=0)
    with store:
        events = store.query(query)

    if json_output:
        print(json.dumps([e.to_dict() for e in events], indent=2))
        return

    if not events:
        console.print("No events found.")
        raise typer.Exit(code=0)

    _print_events_table(events, f"Events ({len(events)})")


@app.command("show")
def show_cmd(
    event_id: str = typer.Argument(..., help="Event ID to display"),
    data_dir: Path | None = DataDirOption,
) -> None:
    """Print one event envelope as JSON."""
    store = _open_store(data_dir)
    event = None
    if store is not None:
        with store:
            event = store.get(event_id)

    if event is None:
        console.print(f"[red]Error:[/red] Event {event_id} not found.")
        raise typer.Exit(code=1)

    print(json.dumps(event.to_dict(), indent=2))


@app.command("chain")
def chain_cmd(
    event_id: str = typer.Argument(..., help="Event ID to start from"),
    data_dir: Path | None = DataDirOption,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Walk parent links from an event back to its root cause."""
    store = _open_store(data_dir)
    chain: list[Event] = []
    if store is not None:
        with store:
            chain = causal_chain(store, event_id)

    if not chain:
        console.print(f"[red]Error:[/red] Event {event_id} not found.")
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps([e.to_dict() for e in chain], indent=2))
        return

    _print_events_table(chain, f"Causal chain for {event_id} (newest first)")


@app.command("metrics")
def metrics_cmd(
    data_dir: Path | None = DataDirOption,
    session_id: str | None = typer.Option(None, "--session", "-s", help="Filter by session id"),
    since: str | None = typer.Option(None, "--since", help="Start timestamp (ISO 8601, inclusive)"),
    until: str | None = typer.Option(None, "--until", help="End timestamp (ISO 8601, inclusive)"),
    group_by: str = typer.Option(
        "metric",
        "--group-by",
        "-g",
        help="Group by: metric, session, unit",
        click_type=click.Choice(list(GROUP_BY_CHOICES)),
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Summarize metric events."""
    query = EventQuery(
        kind="metric",
        session_id=session_id,
        start_ts=_parse_ts(since, "--since"),
        end_ts=_parse_ts(until, "--until"),
    )

    store = _open_store(data_dir)
    events: list[Event] = []
    if store is not None:
        with store:
            events = store.query(query)

    summaries = metric_summary(events, group_by=group_by)

    if json_output:
        print(json.dumps([s.to_dict() for s in summaries], indent=2))
        return

    if not summaries:
        console.print("No metric events found.")
        raise typer.Exit(code=0)

    _print_metrics_table(summaries, group_by)


def _print_metrics_table(summaries: list[MetricSummary], group_by: str) -> None:
    """Render a Rich table with metric summaries."""
    table = Table(title=f"Metrics (grouped by {group_by})")
    table.add_column("Group", style="cyan")
    table.add_column("Unit")
    table.add_column("Count", justify="right")
    table.add_column("Total", justify="right", style="green")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Mean", justify="right")

    for summary in summaries:
        table.add_row(
            summary.group_key,
            summary.unit,
            str(summary.count),
            f"{summary.total:,.2f}",
            f"{summary.minimum:,.2f}",
            f"{summary.maximum:,.2f}",
            f"{summary.mean:,.2f}",
        )

    console.print(table)


@app.command("machine-id")
def machine_id_cmd(data_dir: Path | None = DataDirOption) -> None:
    """Print the machine identity for the data directory (creating it if needed)."""
    resolved = _resolve_data_dir(data_dir)
    try:
        machine_id = resolve_machine_id(resolved)
    except ObservabilityError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from None
    print(machine_id)


def main() -> None:
    app()
