"""trigger-relay CLI — Entry point.

Usage:
    trigger-relay generate --commit-hash <sha> --template test-analysis
    trigger-relay generate --validate-only --commit-hash xyz ...
    trigger-relay watch
    trigger-relay commits
    trigger-relay templates
    trigger-relay status
"""

from __future__ import annotations

import typer
from rich.console import Console

from trigger_relay import __version__
from trigger_relay.cli.commands import daemon, generate, status, templates

app = typer.Typer(
    name="trigger-relay",
    help="File-based trigger relay between a commit watcher and a directory watcher.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()

app.command("generate")(generate.generate)
app.command("watch")(daemon.watch)
app.command("commits")(daemon.commits)
app.command("templates")(templates.list_templates_cmd)
app.command("status")(status.status)


def _version(value: bool) -> None:
    if value:
        console.print(f"trigger-relay {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_version, is_eager=True, help="Show the version and exit."
    ),
) -> None:
    pass


if __name__ == "__main__":
    app()
