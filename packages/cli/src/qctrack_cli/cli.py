"""CLI entry point for qctrack.

Commands:
  ingest    — feed a JSON-lines capture of intercepted calls through the engine
  tick      — one timer wake-up (grace windows, abandonment)
  entries   — show the merged timeline with dashboard filters
  stats     — totals per project and activity type, or a weekly pay summary
  log-time  — add an off-platform entry
  edit      — correct one entry
  delete    — delete one entry
  export    — CSV export of the timeline
  lookup    — resolve scraped table-cell ids to deep links
  init      — interactive setup wizard
"""

from __future__ import annotations

import logging
import sys

import click

from qctrack_cli.commands.delete import delete_cmd
from qctrack_cli.commands.edit import edit_cmd
from qctrack_cli.commands.entries import entries_cmd
from qctrack_cli.commands.export import export_cmd
from qctrack_cli.commands.ingest import ingest_cmd, tick_cmd
from qctrack_cli.commands.init import init_cmd
from qctrack_cli.commands.log_time import log_time_cmd
from qctrack_cli.commands.lookup import lookup_cmd
from qctrack_cli.commands.stats import stats_cmd

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, str(level_name).upper(), None)
    if not isinstance(level, int):
        raise click.BadParameter(f"Unknown log level: {level_name}", param_hint="--log-level")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    logging.basicConfig(level=level, handlers=[handler], force=True)


@click.group()
@click.version_option(package_name="qctrack", prog_name="qctrack")
@click.option(
    "--config",
    "config_path",
    default=".qctrack.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="QCTRACK_CONFIG",
)
@click.option("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ...).")
@click.pass_context
def main(ctx: click.Context, config_path: str, log_level: str | None):
    """Track QC audit time from intercepted platform calls."""
    from qctrack_core.config import load_config

    ctx.ensure_object(dict)

    config = load_config(config_path, cli_overrides={"log_level": log_level})
    _configure_logging(config.get("log_level", "WARNING"))

    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path


main.add_command(ingest_cmd)
main.add_command(tick_cmd)
main.add_command(entries_cmd)
main.add_command(stats_cmd)
main.add_command(log_time_cmd)
main.add_command(edit_cmd)
main.add_command(delete_cmd)
main.add_command(export_cmd)
main.add_command(lookup_cmd)
main.add_command(init_cmd)
