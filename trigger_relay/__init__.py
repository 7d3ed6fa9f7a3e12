"""trigger-relay — Durable file-based triggers between automation daemons.

A commit-watching producer and a directory-watching consumer exchange work
through a shared directory of JSON artifacts.  No sockets, no shared memory:
every hand-off is a file written with stage-then-rename and claimed by move.

Layers (bottom to top):
    1. Triggers    — schema, writer, archival store, dispatcher, watcher
    2. Commits     — commit classification and the producer loop
    3. Telemetry   — metrics snapshots, periodic performance/health logs
    4. Daemon/CLI  — component wiring, signal handling, typer commands
"""

__version__ = "0.1.0"
__schema_version__ = "1.0"

__all__ = ["__version__", "__schema_version__"]
