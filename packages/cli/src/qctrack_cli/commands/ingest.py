"""ingest and tick commands — drive the tracking engine from the command line."""

from __future__ import annotations

import json

import click
from rich.console import Console

from qctrack_cli.context import get_engine

console = Console()


@click.command("ingest")
@click.argument("capture_file", type=click.File("r"))
@click.option("--tick/--no-tick", "run_tick", default=True, show_default=True, help="Run a timer tick afterwards.")
@click.option("--now", "now_ms", type=int, default=None, help="Clock for the tick, in ms since epoch.")
@click.pass_context
def ingest_cmd(ctx, capture_file, run_tick: bool, now_ms: int | None):
    """Feed a JSON-lines capture of intercepted calls through the engine.

    Each line is one call: {"url", "method", "requestBody", "responseBody",
    "timestamp"}. Calls that are not audit lifecycle events are ignored.
    """
    engine = get_engine(ctx)

    calls = 0
    bad_lines = 0
    updated: set[str] = set()

    for line_number, line in enumerate(capture_file, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            bad_lines += 1
            console.print(f"[dim]Line {line_number}: not valid JSON, skipped.[/dim]")
            continue
        if not isinstance(raw, dict):
            bad_lines += 1
            continue
        calls += 1
        for entry in engine.handle_call(raw):
            updated.add(entry.id)

    finalized = engine.tick(now_ms) if run_tick else []

    console.print(f"Read {calls} call(s); {len(updated)} entr{'y' if len(updated) == 1 else 'ies'} updated.")
    if finalized:
        console.print(f"Finalized {len(finalized)} session(s) on tick.")
    if bad_lines:
        console.print(f"[yellow]Skipped {bad_lines} unreadable line(s).[/yellow]")
    _warn_if_unsaved(engine)


@click.command("tick")
@click.option("--now", "now_ms", type=int, default=None, help="Clock, in ms since epoch (default: now).")
@click.pass_context
def tick_cmd(ctx, now_ms: int | None):
    """Finalize sessions whose grace window or timeout has elapsed."""
    engine = get_engine(ctx)
    finalized = engine.tick(now_ms)

    if not finalized:
        console.print(f"No sessions to finalize ({len(engine.sessions)} in flight).")
    for entry in finalized:
        console.print(f"  {entry.qa_operation_id}: {entry.status}")
    _warn_if_unsaved(engine)


def _warn_if_unsaved(engine) -> None:
    if engine.dirty:
        console.print("[yellow]Warning: changes could not be saved to the store; they will be retried.[/yellow]")
