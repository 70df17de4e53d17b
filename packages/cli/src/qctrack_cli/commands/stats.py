"""stats command — aggregate tracked time across the timeline."""

from __future__ import annotations

from collections import Counter
from datetime import date, timedelta

import click
from rich.console import Console
from rich.table import Table

from qctrack_cli.context import get_engine
from qctrack_cli.formatting import format_activity_type, format_duration, format_hours, format_money
from qctrack_core.analytics import calculate_weekly_pay, hours_by_day
from qctrack_core.config import PaySettings
from qctrack_core.merger import find_overlaps, split_by_type
from qctrack_store.models import STATUS_CANCELED

console = Console()


@click.command("stats")
@click.option("--top", default=10, show_default=True, help="Number of projects to show.")
@click.option("--week", is_flag=True, default=False, help="Show daily hours and pay for one week instead.")
@click.option(
    "--week-of",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Any day in the week to summarise (default: today).",
)
@click.pass_context
def stats_cmd(ctx, top: int, week: bool, week_of):
    """Show totals per project and per activity type.

    Canceled audits are counted but their time is left out of the totals.
    With --week, show hours per day and the week's pay instead.
    """
    engine = get_engine(ctx)

    if week or week_of is not None:
        try:
            settings = PaySettings.from_config(ctx.obj["config"])
        except ValueError as e:
            raise click.UsageError(f"Invalid configuration in {ctx.obj['config_path']}: {e}")
        _print_week(engine.entries(), week_of.date() if week_of else date.today(), settings)
        return

    entries = engine.entries()
    if not entries:
        console.print("[yellow]No entries tracked yet.[/yellow]")
        return

    audits, off_platform = split_by_type(entries)
    counted_audits = [a for a in audits if a.status != STATUS_CANCELED]

    project_time: Counter[str] = Counter()
    project_count: Counter[str] = Counter()
    for entry in counted_audits:
        project = entry.project_name or entry.project_id or "(unknown)"
        project_time[project] += entry.duration
        project_count[project] += 1

    activity_time: Counter[str] = Counter()
    for entry in off_platform:
        activity_time[entry.activity_type or "other"] += entry.duration

    audit_total = sum(project_time.values())
    off_platform_total = sum(activity_time.values())

    # --- Summary ---
    console.print("\n[bold]Tracked time[/bold]")
    console.print(f"  Audits:          {len(audits)} ({sum(1 for a in audits if a.status == STATUS_CANCELED)} canceled)")
    console.print(f"  Audit time:      {format_duration(audit_total)}")
    console.print(f"  Off-platform:    {format_duration(off_platform_total)}")
    console.print(f"  Total:           {format_duration(audit_total + off_platform_total)}")
    console.print(f"  Over max time:   {sum(1 for a in counted_audits if a.is_over_time)}")
    console.print(f"  Partial entries: {sum(1 for e in entries if e.partial)}")
    console.print(f"  Overlaps:        {len(find_overlaps(entries))}")

    # --- Per project ---
    if project_time:
        project_table = Table(title=f"Top {top} Projects", show_header=True)
        project_table.add_column("Project")
        project_table.add_column("Audits", justify="right")
        project_table.add_column("Time", justify="right")
        project_table.add_column("Avg", justify="right")
        for project, total in project_time.most_common(top):
            count = project_count[project]
            project_table.add_row(project, str(count), format_duration(total), format_duration(total // count))
        console.print(project_table)

    # --- Per activity ---
    if activity_time:
        activity_table = Table(title="Off-platform Activities", show_header=True)
        activity_table.add_column("Activity", style="bold")
        activity_table.add_column("Time", justify="right")
        activity_table.add_column("% of off-platform", justify="right")
        for activity, total in activity_time.most_common():
            pct = f"{total / off_platform_total * 100:.1f}%" if off_platform_total else "0%"
            activity_table.add_row(format_activity_type(activity), format_duration(total), pct)
        console.print(activity_table)


def _print_week(entries, day: date, settings: PaySettings) -> None:
    pay = calculate_weekly_pay(entries, day, settings)
    daily = hours_by_day(entries, pay.week_start, pay.week_end)

    day_table = Table(title=f"Week of {pay.week_start.isoformat()}", show_header=True)
    day_table.add_column("Day")
    day_table.add_column("Date")
    day_table.add_column("Hours", justify="right")
    for current in (pay.week_start + timedelta(days=i) for i in range(7)):
        day_table.add_row(current.strftime("%A"), current.isoformat(), format_hours(daily[current]))
    console.print(day_table)

    console.print("\n[bold]Weekly pay[/bold]")
    console.print(f"  Total hours:     {format_hours(pay.total_hours)}")
    console.print(f"  Regular:         {format_hours(pay.regular_hours)} h  {format_money(pay.regular_pay)}")
    if settings.weekly_overtime_enabled:
        console.print(
            f"  Overtime:        {format_hours(pay.overtime_hours)} h  {format_money(pay.overtime_pay)}"
            f" ({settings.overtime_rate:g}x over {settings.weekly_overtime_threshold:g} h)"
        )
    console.print(f"  Total pay:       {format_money(pay.total_pay)}")
