"""Daemon runner — wire components from Settings and run them until signalled.

Two daemons share this module:

    consumer   DirectoryWatcher + TelemetryRecorder
    producer   CommitWatcher    + TelemetryRecorder

Each runs on one asyncio event loop.  SIGINT / SIGTERM set a stop event;
components finish their current iteration and exit.  If the trigger or
archive directories cannot be created at startup, the daemon exits with
``EXIT_FATAL``.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Protocol

from rich.console import Console

from trigger_relay.collaborators.git import GitClient
from trigger_relay.collaborators.process import ProcessTable
from trigger_relay.collaborators.runner import CommandRunner
from trigger_relay.commits.watcher import CommitWatcher
from trigger_relay.config import Settings
from trigger_relay.exceptions import ConfigError, TriggerIOError
from trigger_relay.logging import get_logger
from trigger_relay.telemetry.metrics import MetricsOwner, SnapshotChannel
from trigger_relay.telemetry.recorder import TelemetryRecorder
from trigger_relay.triggers.archive import ArchivalStore
from trigger_relay.triggers.dispatcher import ActionDispatcher, AnalyzeTestResultsHandler
from trigger_relay.triggers.models import TriggerAction
from trigger_relay.triggers.notify import ConsoleSink, NotificationSink, build_sink
from trigger_relay.triggers.strategies import build_strategy
from trigger_relay.triggers.watcher import DirectoryWatcher
from trigger_relay.triggers.writer import TriggerWriter

log = get_logger(__name__)

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_WRITE = 2
EXIT_FATAL = 3


class Service(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _git(settings: Settings, runner: CommandRunner) -> GitClient:
    return GitClient(
        settings.paths.repo_path,
        runner,
        remote=settings.commits.remote,
        branch=settings.commits.branch,
    )


def _sink(settings: Settings, console: Console | None) -> NotificationSink:
    try:
        return build_sink(settings.notify, console)
    except ConfigError as exc:
        log.warning(
            "notify_sink_fallback", sink=settings.notify.sink, reason=exc.reason, using="console"
        )
        return ConsoleSink(console)


def build_writer(settings: Settings) -> TriggerWriter:
    return TriggerWriter(
        settings.paths.trigger_dir,
        mode=settings.writer.mode,
        generator=settings.writer.generator,
        timezone=settings.writer.timezone,
    )


def build_directory_watcher(
    settings: Settings,
    channel: SnapshotChannel | None = None,
    console: Console | None = None,
) -> DirectoryWatcher:
    runner = CommandRunner()
    dispatcher = ActionDispatcher(timeout=settings.watcher.handler_timeout_seconds)
    dispatcher.register(
        TriggerAction.ANALYZE_TEST_RESULTS,
        AnalyzeTestResultsHandler(
            _git(settings, runner),
            _sink(settings, console),
            pull=settings.watcher.pull_before_analysis,
        ),
    )
    return DirectoryWatcher(
        ArchivalStore.from_paths(settings.paths),
        dispatcher,
        settings.watcher,
        metrics=MetricsOwner("directory_watcher", channel),
        strategy=build_strategy(settings.watcher, settings.paths.trigger_dir),
    )


def build_commit_watcher(settings: Settings, channel: SnapshotChannel | None = None) -> CommitWatcher:
    runner = CommandRunner()
    return CommitWatcher(
        _git(settings, runner),
        build_writer(settings),
        settings.commits,
        ci=settings.ci,
        metrics=MetricsOwner("commit_watcher", channel),
        runner=runner,
        processes=ProcessTable(),
    )


def build_recorder(settings: Settings, channel: SnapshotChannel) -> TelemetryRecorder | None:
    if not settings.telemetry.enabled:
        return None
    return TelemetryRecorder(channel, settings.telemetry, settings.paths.telemetry_dir)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def serve(
    service: Service,
    recorder: TelemetryRecorder | None = None,
    stop_event: asyncio.Event | None = None,
) -> int:
    """Start *service* (and *recorder*), wait for a stop, shut both down.

    Returns an exit code: ``EXIT_OK`` or ``EXIT_FATAL`` when startup fails.
    """
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, stop_event)
    name = type(service).__name__

    try:
        try:
            await service.start()
        except TriggerIOError as exc:
            log.error("daemon_startup_failed", component=name, path=exc.path, error=exc.reason)
            return EXIT_FATAL

        if recorder is not None:
            await recorder.start()
        log.info("daemon_ready", component=name, telemetry=recorder is not None)

        await stop_event.wait()

        log.info("daemon_stopping", component=name)
        if recorder is not None:
            await recorder.stop()
        await service.stop()
        return EXIT_OK
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def run_directory_watcher(settings: Settings, console: Console | None = None) -> int:
    channel = SnapshotChannel()

    async def _main() -> int:
        watcher = build_directory_watcher(settings, channel, console)
        return await serve(watcher, build_recorder(settings, channel))

    return asyncio.run(_main())


def run_commit_watcher(settings: Settings) -> int:
    channel = SnapshotChannel()

    async def _main() -> int:
        watcher = build_commit_watcher(settings, channel)
        return await serve(watcher, build_recorder(settings, channel))

    return asyncio.run(_main())


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event
) -> list[signal.Signals]:
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig, stop_event)
        except (NotImplementedError, RuntimeError):
            # Windows event loops, or not running in the main thread.
            continue
        installed.append(sig)
    return installed


def _on_signal(sig: signal.Signals, stop_event: asyncio.Event) -> None:
    log.info("signal_received", signal=sig.name)
    stop_event.set()
