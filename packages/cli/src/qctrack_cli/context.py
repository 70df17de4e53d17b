"""Store and engine construction shared by the commands.

The group callback only loads configuration. Commands that read or write
the timeline call get_engine(), which opens the configured store on first
use, so commands like `init` and `lookup` never touch persisted state.
"""

from __future__ import annotations

import click
from rich.console import Console

from qctrack_core.engine import TrackingEngine

console = Console(stderr=True)


def build_store(config: dict):
    """Instantiate the configured store from .qctrack.yml settings.

    Store selection:
      store: memory → MemoryStore   (nothing survives the process)
      store: sqlite → SQLiteStore   (store_path or .qctrack.db)
      (default)     → JsonFileStore (store_path or .qctrack.json)

    This factory lives in the CLI so neither qctrack_core nor qctrack_store
    know about the CLI config format.
    """
    store_type = config.get("store", "json")
    store_path = config.get("store_path")

    if store_type == "memory":
        from qctrack_store.memory import MemoryStore

        return MemoryStore()

    if store_type == "sqlite":
        from qctrack_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=store_path or ".qctrack.db")

    if store_type != "json":
        console.print(f"[yellow]Unknown store '{store_type}'. Falling back to the JSON file store.[/yellow]")

    from qctrack_store.jsonfile import JsonFileStore

    return JsonFileStore(path=store_path or ".qctrack.json")


def get_engine(ctx: click.Context) -> TrackingEngine:
    """Return the engine for this invocation, opening the store on first use."""
    engine = ctx.obj.get("engine")
    if engine is not None:
        return engine

    config = ctx.obj["config"]
    store = build_store(config)
    ctx.find_root().call_on_close(store.close)

    try:
        engine = TrackingEngine.open(store, config)
    except ValueError as e:
        raise click.UsageError(f"Invalid configuration in {ctx.obj['config_path']}: {e}")

    if engine.load_error:
        console.print(f"[yellow]{engine.load_error}. Starting from an empty timeline.[/yellow]")
    if engine.load_result.backup_key:
        console.print(
            f"[yellow]The unrecognised state will be kept under '{engine.load_result.backup_key}' "
            "on the next save.[/yellow]"
        )

    ctx.obj["store"] = store
    ctx.obj["engine"] = engine
    return engine
