"""export command — CSV export of the merged timeline."""

from __future__ import annotations

import csv

import click
from rich.console import Console

from qctrack_cli.context import get_engine
from qctrack_cli.formatting import format_activity_type, iso_timestamp

console = Console(stderr=True)

CSV_HEADERS = [
    "ID",
    "Type",
    "Completion Time",
    "Duration (minutes)",
    "Project ID",
    "Project Name",
    "Description",
    "Status",
    "Activity Type",
    "Op ID",
    "Attempt ID",
    "Max Time (minutes)",
    "User Email",
]


def entry_row(entry, email: str = "") -> list:
    finished_at = entry.end_time or entry.completion_time or entry.transition_time or entry.start_time
    return [
        entry.id,
        entry.type,
        iso_timestamp(finished_at),
        round(entry.duration / 60000),
        entry.project_id or "",
        entry.project_name or "",
        entry.description or "",
        entry.status,
        format_activity_type(entry.activity_type),
        entry.qa_operation_id or "",
        entry.attempt_id or "",
        round(entry.max_time / 60) if entry.max_time else "",
        email,
    ]


@click.command("export")
@click.option("--output", "-o", default="-", show_default=True, help="CSV file to write ('-' for stdout).")
@click.option("--email", default="", help="Value for the User Email column.")
@click.pass_context
def export_cmd(ctx, output: str, email: str):
    """Export every entry as CSV, ordered by start time."""
    engine = get_engine(ctx)
    entries = engine.entries()

    with click.open_file(output, "w", encoding="utf-8") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for entry in entries:
            writer.writerow(entry_row(entry, email))

    if output != "-":
        console.print(f"[green]Exported {len(entries)} entr{'y' if len(entries) == 1 else 'ies'} to {output}[/green]")
