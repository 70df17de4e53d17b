"""edit command — correct one entry on the timeline."""

from __future__ import annotations

import click
from rich.console import Console

from qctrack_cli.context import get_engine
from qctrack_cli.formatting import format_duration, parse_max_time, utc_ms
from qctrack_store.models import ACTIVITY_TYPES

console = Console()

_TIME_FORMATS = ["%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M"]


@click.command("edit")
@click.argument("entry_id")
@click.option("--project-name", default=None, help="Display name of the project.")
@click.option("--max-time", default=None, help='Audit max time, e.g. "3h 30m", "3h" or "90m".')
@click.option("--description", default=None, help="Free-text note.")
@click.option("--start", type=click.DateTime(_TIME_FORMATS), default=None, help="Audit start (UTC).")
@click.option("--end", type=click.DateTime(_TIME_FORMATS), default=None, help="Audit end (UTC).")
@click.option("--type", "activity_type", type=click.Choice(ACTIVITY_TYPES), default=None, help="Off-platform activity.")
@click.option("--hours", type=click.IntRange(min=0), default=None)
@click.option("--minutes", type=click.IntRange(min=0, max=59), default=None)
@click.option("--date", "day", default=None, help="Off-platform day (YYYY-MM-DD).")
@click.option("--project", "project_id", default=None, help="Off-platform project id.")
@click.pass_context
def edit_cmd(
    ctx, entry_id: str, project_name, max_time, description, start, end, activity_type, hours, minutes, day, project_id
):
    """Edit the entry ENTRY_ID.

    Finished audits take --project-name, --max-time, --description,
    --start and --end (the duration is recomputed). Off-platform entries
    take --type, --hours, --minutes, --date, --description, --project and
    --project-name.
    """
    changes = {
        "project_name": project_name,
        "description": description,
        "activity_type": activity_type,
        "hours": hours,
        "minutes": minutes,
        "date": day,
        "project_id": project_id,
    }
    if max_time is not None:
        try:
            changes["max_time"] = parse_max_time(max_time)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--max-time")
    if start is not None:
        changes["start_time"] = utc_ms(start)
    if end is not None:
        changes["end_time"] = utc_ms(end)
    changes = {k: v for k, v in changes.items() if v is not None}

    engine = get_engine(ctx)
    try:
        entry = engine.update_entry(entry_id, **changes)
    except ValueError as e:
        raise click.UsageError(str(e))
    if entry is None:
        raise click.UsageError(f"No entry with id {entry_id!r}.")

    console.print(f"[green]Updated {entry_id}[/green] ({format_duration(entry.duration)})")
    if engine.dirty:
        console.print("[yellow]Warning: the change could not be saved to the store yet.[/yellow]")
