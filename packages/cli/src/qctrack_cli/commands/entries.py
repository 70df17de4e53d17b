"""entries command — display the merged timeline with dashboard filters."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from qctrack_cli.context import get_engine
from qctrack_cli.formatting import format_activity_type, format_duration, format_max_time, format_timestamp
from qctrack_core.merger import find_overlaps
from qctrack_core.query import ENTRY_TYPES, EntryFilters
from qctrack_store.models import ACTIVITY_TYPES

console = Console()

_DATE = click.DateTime(formats=["%Y-%m-%d"])

_STATUS_STYLE = {
    "completed": "green",
    "in-progress": "cyan",
    "pending-transition": "yellow",
    "canceled": "red",
}


@click.command("entries")
@click.option("--from", "start_date", type=_DATE, default=None, help="First day to include (YYYY-MM-DD).")
@click.option("--to", "end_date", type=_DATE, default=None, help="Last day to include (YYYY-MM-DD).")
@click.option("--project", "project_id", default=None, help="Filter by project id.")
@click.option("--type", "entry_type", type=click.Choice(ENTRY_TYPES), default="all", show_default=True)
@click.option("--activity", "activity_type", type=click.Choice(ACTIVITY_TYPES), default=None)
@click.option("--over-time", is_flag=True, default=False, help="Only audits that ran past their max time.")
@click.option("--limit", default=50, show_default=True, help="Maximum number of entries to show.")
@click.pass_context
def entries_cmd(ctx, start_date, end_date, project_id, entry_type, activity_type, over_time: bool, limit: int):
    """Show tracked entries, most recent first.

    Partial entries (reconstructed from an orphaned event, start time
    estimated) are marked ~. Audits that overlap off-platform time are
    marked !.
    """
    engine = get_engine(ctx)

    filters = EntryFilters(
        start_date=start_date.date() if start_date else None,
        end_date=end_date.date() if end_date else None,
        project_id=project_id,
        entry_type=entry_type,
        activity_type=activity_type,
        show_only_over_time=over_time,
    )
    entries = engine.list_entries(filters)
    if not entries:
        console.print("[yellow]No entries found.[/yellow]")
        return

    overlapping = {e.id for pair in find_overlaps(engine.entries()) for e in pair}

    # Show most recent first, capped at --limit.
    entries = list(reversed(entries))[:limit]

    table = Table(title="Tracked Time", show_header=True, header_style="bold cyan")
    table.add_column("", width=2)
    table.add_column("Start", width=16)
    table.add_column("Type", width=12)
    table.add_column("Project", max_width=24)
    table.add_column("Details", max_width=40)
    table.add_column("Duration", justify="right", width=9)
    table.add_column("Max", justify="right", width=8)
    table.add_column("Status", width=18)

    for e in entries:
        marks = ("~" if e.partial else "") + ("!" if e.id in overlapping else "")
        duration = format_duration(e.duration)
        if e.is_over_time:
            duration = f"[red]{duration}[/red]"
        status_style = _STATUS_STYLE.get(e.status, "white")
        table.add_row(
            marks,
            format_timestamp(e.start_time),
            "audit" if e.is_audit else format_activity_type(e.activity_type),
            e.project_name or e.project_id or "",
            (e.description or "")[:40],
            duration,
            format_max_time(e.max_time),
            f"[{status_style}]{e.status}[/{status_style}]",
        )

    console.print(table)
