"""CLI — Create a trigger artifact."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from trigger_relay.cli.settings import load_settings, setup_logging
from trigger_relay.daemon import EXIT_VALIDATION, EXIT_WRITE, build_writer
from trigger_relay.exceptions import TriggerIOError, TriggerValidationError
from trigger_relay.triggers.schema import FieldError, serialize

console = Console()


def generate(
    action: str | None = typer.Option(
        None, "--action", "-a",
        help="analyze_test_results, deploy_fixes, run_tests or custom. Defaults to the template's.",
    ),
    commit_hash: str = typer.Option("", "--commit-hash", "-c", help="7-40 hex characters."),
    commit_message: str = typer.Option("", "--commit-message", "-m", help="At most 500 characters."),
    files: Annotated[
        list[str] | None,
        typer.Option("--file", "-f", help="Glob of files to check. Repeatable."),
    ] = None,
    priority: str | None = typer.Option(None, "--priority", "-p", help="high, normal or low."),
    source: str = typer.Option(
        "automated", "--source", "-s", help="test_computer, dev_computer or automated."
    ),
    custom_data: str | None = typer.Option(None, "--custom-data", help="Free text, at most 1000 characters."),
    template: str | None = typer.Option(None, "--template", "-t", help="Named defaults, see `templates`."),
    validate_only: bool = typer.Option(False, "--validate-only", help="Check the fields, write nothing."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print the artifact and debug logs."),
    mailbox: bool = typer.Option(False, "--mailbox", help="Write the legacy single trigger.json (lossy)."),
    config: Annotated[
        Path | None, typer.Option("--config", help="Path to config.yaml.")
    ] = None,
    trigger_dir: Annotated[
        Path | None, typer.Option("--trigger-dir", help="Override paths.trigger_dir.")
    ] = None,
) -> None:
    """Validate and write one trigger artifact.

    Exit codes: 0 written (or valid), 1 validation failed, 2 write failed.
    """
    settings = load_settings(config, trigger_dir)
    if mailbox:
        settings = settings.with_overrides(writer={"mode": "mailbox"})
    setup_logging(settings, verbose=verbose, quiet=True)

    writer = build_writer(settings)

    fields = dict(
        action=action,
        commit_hash=commit_hash,
        commit_message=commit_message,
        files_to_check=files or None,
        priority=priority,
        source=source,
        custom_data=custom_data,
        template=template,
    )

    try:
        message = writer.build(**fields)
    except TriggerValidationError as exc:
        _print_errors(exc.errors)
        raise typer.Exit(EXIT_VALIDATION)

    if validate_only:
        console.print("[green]valid[/green]")
        if verbose:
            console.print(Syntax(serialize(message), "json"))
        return

    try:
        path = writer.write(message)
    except TriggerIOError as exc:
        console.print(f"[red]Write failed:[/red] {exc.message}")
        raise typer.Exit(EXIT_WRITE)

    console.print(f"[green]Trigger written:[/green] {path}")
    if verbose:
        console.print(Syntax(serialize(message), "json"))


def _print_errors(errors: list[FieldError]) -> None:
    table = Table(title="Invalid trigger", title_style="bold red")
    table.add_column("Field", style="cyan")
    table.add_column("Reason")
    for error in errors:
        table.add_row(error.field, error.reason)
    console.print(table)
