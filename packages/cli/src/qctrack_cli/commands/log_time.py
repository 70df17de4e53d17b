"""log-time command — add a manually logged off-platform entry."""

from __future__ import annotations

import uuid

import click
from rich.console import Console

from qctrack_cli.context import get_engine
from qctrack_cli.formatting import format_activity_type, format_duration, today_iso
from qctrack_store.models import ACTIVITY_TYPES, OffPlatformEntry

console = Console()


@click.command("log-time")
@click.option("--type", "activity_type", type=click.Choice(ACTIVITY_TYPES), required=True, help="Activity type.")
@click.option("--hours", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--minutes", type=click.IntRange(min=0, max=59), default=0, show_default=True)
@click.option("--date", "day", default=None, help="Day the time was spent (YYYY-MM-DD, default: today).")
@click.option("--description", default="", help="Free-text note.")
@click.option("--project", "project_id", default=None, help="Project id to attribute the time to.")
@click.pass_context
def log_time_cmd(ctx, activity_type: str, hours: int, minutes: int, day: str | None, description: str, project_id):
    """Log time spent off the platform (onboarding, validation, ...)."""
    if hours == 0 and minutes == 0:
        raise click.UsageError("Log at least one minute (--hours / --minutes).")

    try:
        entry = OffPlatformEntry(
            id=f"off-{uuid.uuid4().hex[:12]}",
            activity_type=activity_type,
            hours=hours,
            minutes=minutes,
            date=day or today_iso(),
            description=description,
            project_id=project_id,
        )
    except ValueError as e:
        raise click.UsageError(str(e))

    engine = get_engine(ctx)
    dashboard_entry = engine.add_off_platform(entry)

    console.print(
        f"[green]Logged {format_duration(dashboard_entry.duration)} of "
        f"{format_activity_type(activity_type)} on {entry.date}[/green] ({entry.id})"
    )
    if engine.dirty:
        console.print("[yellow]Warning: the entry could not be saved to the store yet.[/yellow]")
