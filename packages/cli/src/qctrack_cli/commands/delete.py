"""delete command — remove one entry from the timeline."""

from __future__ import annotations

import click
from rich.console import Console

from qctrack_cli.context import get_engine

console = Console()


@click.command("delete")
@click.argument("entry_id")
@click.option("--yes", is_flag=True, default=False, help="Skip the confirmation prompt.")
@click.pass_context
def delete_cmd(ctx, entry_id: str, yes: bool):
    """Delete the entry ENTRY_ID (an operation id or off-platform entry id)."""
    engine = get_engine(ctx)

    if not any(e.id == entry_id for e in engine.entries()):
        raise click.UsageError(f"No entry with id {entry_id!r}.")

    if not yes and not click.confirm(f"Delete entry {entry_id}?", default=False):
        console.print("Aborted.")
        return

    engine.delete_entry(entry_id)
    console.print(f"[green]Deleted {entry_id}[/green]")
    if engine.dirty:
        console.print("[yellow]Warning: the deletion could not be saved to the store yet.[/yellow]")
