"""CLI — List the named trigger templates."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from trigger_relay.triggers.templates import list_templates

console = Console()


def list_templates_cmd(
    json_output: bool = typer.Option(False, "--json", help="Print as JSON."),
) -> None:
    """Show every template with its action, priority and files."""
    templates = list_templates()

    if json_output:
        console.print_json(
            data=[
                {
                    "name": t.name,
                    "description": t.description,
                    "action": t.action.value,
                    "priority": t.priority.value,
                    "filesToCheck": list(t.files_to_check),
                }
                for t in templates
            ]
        )
        return

    table = Table(title="Trigger templates")
    table.add_column("Name", style="cyan")
    table.add_column("Action")
    table.add_column("Priority")
    table.add_column("Files to check")
    table.add_column("Description", style="dim")
    for t in templates:
        table.add_row(t.name, t.action.value, t.priority.value, "\n".join(t.files_to_check), t.description)
    console.print(table)
