"""init command — interactive setup wizard.

Writes .qctrack.yml with the store backend and the correlator timings, so
every later command picks them up without flags.
"""

from __future__ import annotations

import click
from rich.console import Console

from qctrack_core.config import DEFAULT_CONFIG, write_config

console = Console()


@click.command("init")
@click.pass_context
def init_cmd(ctx):
    """Set up qctrack in the current directory.

    Creates (or updates) the configuration file given by --config.
    """
    config_path = (ctx.obj or {}).get("config_path", ".qctrack.yml")

    console.print("\n[bold cyan]qctrack init[/bold cyan] — setup wizard\n")

    # --- Choose store backend ---
    console.print("Where should tracked time be kept?")
    console.print("  [bold]json[/bold]    — a local JSON file (default)")
    console.print("  [bold]sqlite[/bold]  — a local SQLite database")
    console.print("  [bold]memory[/bold]  — nothing is kept between runs (for trying things out)")
    store_type = click.prompt(
        "Store backend",
        type=click.Choice(["json", "sqlite", "memory"]),
        default="json",
    )

    config: dict = {"store": store_type}

    if store_type in ("json", "sqlite"):
        default_path = ".qctrack.json" if store_type == "json" else ".qctrack.db"
        store_path = click.prompt("Store path", default=default_path)
        if store_path != default_path:
            config["store_path"] = store_path

    # --- Correlator timings ---
    config["grace_window_seconds"] = click.prompt(
        "Seconds to wait for a transition after an audit is completed",
        type=click.IntRange(min=0),
        default=DEFAULT_CONFIG["grace_window_seconds"],
    )
    default_minutes = click.prompt(
        "Max time in minutes for audits that don't report one",
        type=click.IntRange(min=1),
        default=DEFAULT_CONFIG["default_max_time"] // 60,
    )
    config["default_max_time"] = default_minutes * 60

    write_config(config, config_path)
    console.print(f"[green]Wrote {config_path}[/green]")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Feed a capture with: [bold]qctrack ingest calls.jsonl[/bold]")
