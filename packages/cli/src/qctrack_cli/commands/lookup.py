"""lookup command — turn truncated ids scraped from audit tables into deep links."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from qctrack_core.resolver import LinkResolver

console = Console()


@click.command("lookup")
@click.argument("nodes_file", type=click.File("r"))
@click.argument("cells", nargs=-1, required=True)
def lookup_cmd(nodes_file, cells: tuple[str, ...]):
    """Resolve CELLS against the node list saved in NODES_FILE.

    NODES_FILE is the page's node list as JSON, either {"nodes": [...]} or a
    bare list. Each cell may hold a full id, or just its first or last five
    characters.
    """
    try:
        data = json.load(nodes_file)
    except json.JSONDecodeError as e:
        raise click.UsageError(f"{nodes_file.name} is not valid JSON: {e}")

    resolver = LinkResolver(data)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Cell")
    table.add_column("QA operation")
    table.add_column("Link")

    for cell in cells:
        entry = resolver.resolve(cell)
        if entry is None:
            table.add_row(cell, "", "[dim]no link[/dim]")
        else:
            table.add_row(cell, entry.qa_id, resolver.lookup_url(cell))

    console.print(table)
