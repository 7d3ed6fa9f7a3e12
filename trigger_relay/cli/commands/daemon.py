"""CLI — Run the consumer and producer daemons."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from trigger_relay.cli.settings import load_settings, setup_logging
from trigger_relay.daemon import run_commit_watcher, run_directory_watcher

console = Console()


def watch(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    trigger_dir: Annotated[
        Path | None, typer.Option("--trigger-dir", help="Override paths.trigger_dir.")
    ] = None,
    interval: float | None = typer.Option(None, "--interval", help="Poll interval in seconds."),
    strategy: str | None = typer.Option(None, "--strategy", help="polling or events."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Watch the trigger directory and dispatch every artifact."""
    settings = load_settings(config, trigger_dir)
    overrides: dict[str, object] = {}
    if interval is not None:
        overrides["poll_interval_seconds"] = interval
    if strategy is not None:
        overrides["strategy"] = strategy
    if overrides:
        settings = settings.with_overrides(watcher=overrides)
    setup_logging(settings, verbose=verbose)

    console.print(f"[bold green]Watching {settings.paths.trigger_dir}[/bold green]")
    code = run_directory_watcher(settings, console)
    raise typer.Exit(code)


def commits(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    trigger_dir: Annotated[
        Path | None, typer.Option("--trigger-dir", help="Override paths.trigger_dir.")
    ] = None,
    repo: Annotated[
        Path | None, typer.Option("--repo", help="Override paths.repo_path.")
    ] = None,
    interval: float | None = typer.Option(None, "--interval", help="Poll interval in seconds."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Watch the repository and write a trigger for every new commit."""
    settings = load_settings(config, trigger_dir)
    if repo is not None:
        settings = settings.with_overrides(paths={"repo_path": repo})
    if interval is not None:
        settings = settings.with_overrides(commits={"poll_interval_seconds": interval})
    setup_logging(settings, verbose=verbose)

    console.print(f"[bold green]Watching commits in {settings.paths.repo_path}[/bold green]")
    code = run_commit_watcher(settings)
    raise typer.Exit(code)
