"""CLI — Artifact counts and recent archive records."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from trigger_relay.cli.settings import load_settings
from trigger_relay.triggers.archive import ArchivalStore

console = Console()


def status(
    config: Annotated[
        Path | None, typer.Option("--config", help="Path to config.yaml.")
    ] = None,
    trigger_dir: Annotated[
        Path | None, typer.Option("--trigger-dir", help="Override paths.trigger_dir.")
    ] = None,
    recent: int = typer.Option(10, "--recent", help="Number of recent archive records to show."),
) -> None:
    """Show how many artifacts sit in each directory."""
    settings = load_settings(config, trigger_dir)
    store = ArchivalStore.from_paths(settings.paths)

    if not store.trigger_dir.is_dir():
        console.print(f"[yellow]Trigger directory does not exist:[/yellow] {store.trigger_dir}")
        raise typer.Exit(1)

    counts = store.counts(settings.watcher.pattern)
    table = Table(title=f"Triggers in {store.trigger_dir}")
    table.add_column("State", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for state, count in counts.items():
        table.add_row(state, str(count))
    console.print(table)

    if recent <= 0:
        return
    records = store.records(limit=recent)
    if not records:
        return
    history = Table(title="Recent outcomes")
    history.add_column("Trigger", style="cyan")
    history.add_column("Outcome")
    history.add_column("Processed")
    history.add_column("Detail", style="dim")
    for record in records:
        colour = "green" if record.outcome.value == "archived" else "red"
        detail = record.result.detail if record.result else "; ".join(
            f"{e['field']}: {e['reason']}" for e in record.errors
        )
        history.add_row(
            record.trigger_id,
            f"[{colour}]{record.outcome.value}[/{colour}]",
            f"{record.processed_at:%Y-%m-%d %H:%M:%S}",
            detail,
        )
    console.print(history)
