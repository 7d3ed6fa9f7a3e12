"""CommitWatcher — the producer loop.

One iteration (``poll_once``)::

    git pull  ──fail──→ back off (interval × 2^(n-1), capped)
        ↓
    read HEAD ──unchanged──→ nothing to do
        ↓
    read message → classify (action, priority)
        ↓
    optional CI steps: terminate stale processes, run the test command
        ↓
    TriggerWriter.emit  ──fail──→ failed_analysis += 1, HEAD retried next time
                                  (CI result kept, steps not re-run)
        ↓
    last_seen_commit = HEAD

Nothing here raises out of the loop.  Collaborator failures are logged and
the next iteration tries again.
"""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any

from trigger_relay.collaborators.git import GitClient
from trigger_relay.collaborators.process import ProcessTable
from trigger_relay.collaborators.runner import CommandRunner
from trigger_relay.commits.classify import classify
from trigger_relay.config import CIConfig, CommitConfig
from trigger_relay.exceptions import (
    ExternalProcessError,
    HandlerTimeoutError,
    TriggerIOError,
    TriggerValidationError,
)
from trigger_relay.logging import bind_trigger_context, clear_trigger_context, get_logger
from trigger_relay.telemetry.metrics import MetricsOwner
from trigger_relay.triggers.models import MAX_COMMIT_MESSAGE_LEN, MAX_CUSTOM_DATA_LEN
from trigger_relay.triggers.writer import TriggerWriter

log = get_logger(__name__)


class CommitWatcher:
    """Turns new commits on the watched branch into trigger artifacts.

    Usage::

        watcher = CommitWatcher(GitClient(repo), TriggerWriter(trigger_dir), settings.commits)
        await watcher.start()
    """

    def __init__(
        self,
        git: GitClient,
        writer: TriggerWriter,
        config: CommitConfig,
        ci: CIConfig | None = None,
        metrics: MetricsOwner | None = None,
        runner: CommandRunner | None = None,
        processes: ProcessTable | None = None,
    ) -> None:
        self._git = git
        self._writer = writer
        self._config = config
        self._ci = ci or CIConfig()
        self._metrics = metrics or MetricsOwner("commit_watcher")
        self._runner = runner or CommandRunner()
        self._processes = processes or ProcessTable()

        self.last_seen_commit: str | None = None
        self.total_commits = 0
        self.successful_analysis = 0
        self.failed_analysis = 0
        self._seeded = False
        self._pull_failures = 0
        # CI payload of a HEAD whose trigger could not be written yet.
        self._pending_ci: tuple[str, str | None] | None = None

        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def start(self) -> None:
        if self.is_running:
            return
        self._writer.ensure_directory()
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="commit_watcher")
        log.info(
            "commit_watcher_started",
            repo=str(self._git.repo_path),
            interval=self._config.poll_interval_seconds,
            trigger_on_start=self._config.trigger_on_start,
        )

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None and not self._task.done():
            await self._task
        self._task = None
        log.info("commit_watcher_stopped", **self.stats)

    def request_stop(self) -> None:
        self._stop_event.set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def metrics(self) -> MetricsOwner:
        return self._metrics

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_commits": self.total_commits,
            "successful_analysis": self.successful_analysis,
            "failed_analysis": self.failed_analysis,
            "last_seen_commit": self.last_seen_commit,
            "pull_failures": self._pull_failures,
        }

    def next_delay(self) -> float:
        """Seconds until the next iteration, including pull backoff."""
        interval = self._config.poll_interval_seconds
        if self._pull_failures == 0:
            return interval
        return min(interval * 2 ** (self._pull_failures - 1), self._config.backoff_max_seconds)

    async def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as exc:
                log.error("commit_iteration_failed", error=str(exc))
            self._metrics.heartbeat()
            self._metrics.publish()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.next_delay())
                return
            except asyncio.TimeoutError:
                pass

    # ---------------------------------------------------------------------------
    # One iteration
    # ---------------------------------------------------------------------------

    async def poll_once(self) -> Path | None:
        """Check for a new commit.  Returns the artifact written, if any."""
        ok, output = await self._git.pull()
        if not ok:
            self._pull_failures += 1
            log.warning(
                "git_pull_failed",
                attempt=self._pull_failures,
                retry_in=self.next_delay(),
                output=output.strip()[-500:],
            )
            return None
        if self._pull_failures:
            log.info("git_pull_recovered", after_failures=self._pull_failures)
            self._pull_failures = 0

        try:
            head = await self._git.head_commit()
        except ExternalProcessError as exc:
            log.error("git_head_unreadable", error=exc.message)
            return None

        if not self._seeded:
            self._seeded = True
            if not self._config.trigger_on_start:
                self.last_seen_commit = head
                log.info("commit_baseline", commit=head[:7])
                return None

        if head == self.last_seen_commit:
            return None

        bind_trigger_context(commit_hash=head[:7])
        try:
            return await self._emit_for(head)
        finally:
            clear_trigger_context()

    async def _emit_for(self, head: str) -> Path | None:
        started = time.monotonic()
        try:
            message = await self._git.last_commit_message()
        except ExternalProcessError as exc:
            log.error("git_message_unreadable", commit=head[:7], error=exc.message)
            return None

        action, priority = classify(message)
        log.info(
            "commit_detected",
            commit=head[:7],
            action=action.value,
            priority=priority.value,
            subject=message.splitlines()[0] if message else "",
        )

        if self._pending_ci is not None and self._pending_ci[0] == head:
            custom_data = self._pending_ci[1]
            log.info("ci_result_reused", commit=head[:7])
        else:
            custom_data = await self._run_ci_steps()
            self._pending_ci = (head, custom_data)

        try:
            path = self._writer.emit(
                commit_hash=head,
                commit_message=message[:MAX_COMMIT_MESSAGE_LEN],
                action=action.value,
                priority=priority.value,
                source=self._config.source,
                template=self._config.template,
                custom_data=custom_data,
            )
        except (TriggerValidationError, TriggerIOError) as exc:
            self.failed_analysis += 1
            self._metrics.record_failure((time.monotonic() - started) * 1000)
            log.error("commit_trigger_failed", commit=head[:7], error=exc.message)
            return None

        self._pending_ci = None
        self.last_seen_commit = head
        self.total_commits += 1
        self.successful_analysis += 1
        self._metrics.record_success((time.monotonic() - started) * 1000)
        return path

    # ---------------------------------------------------------------------------
    # CI steps
    # ---------------------------------------------------------------------------

    async def _run_ci_steps(self) -> str | None:
        """Terminate stale processes and run the test command.

        Returns the ``customData`` payload describing the test run, or None
        when no test command is configured.  A failing test run never blocks
        the trigger: its results still need analysis.
        """
        for pattern in self._ci.cleanup_processes:
            outcome = await asyncio.to_thread(
                self._processes.terminate_all, pattern, self._ci.force_terminate
            )
            if outcome:
                log.info(
                    "stale_processes_terminated",
                    pattern=pattern,
                    pids=sorted(outcome),
                    stopped=sum(outcome.values()),
                )

        if not self._ci.test_command:
            return None

        command = self._ci.test_command
        payload: dict[str, Any] = {"testCommand": " ".join(command)}
        try:
            result = await self._runner.run(
                command, timeout=self._ci.test_timeout_seconds, cwd=self._git.repo_path
            )
        except HandlerTimeoutError as exc:
            log.warning("ci_test_timeout", command=command, timeout=exc.timeout)
            payload.update(exitCode=None, timedOut=True)
        except ExternalProcessError as exc:
            log.error("ci_test_not_started", command=command, error=exc.stderr or exc.message)
            payload.update(exitCode=None, error=exc.stderr or exc.message)
        else:
            log.info("ci_test_finished", command=command, exit_code=result.exit_code)
            payload.update(exitCode=result.exit_code, stderrTail=result.stderr.strip())
        return fit_custom_data(payload)


def fit_custom_data(payload: dict[str, Any], limit: int = MAX_CUSTOM_DATA_LEN) -> str:
    """JSON-encode *payload*, trimming string fields from the front to fit *limit*.

    The last characters of output are the useful ones, so long strings keep
    their tail.
    """
    data = dict(payload)
    encoded = json.dumps(data)
    for key in ("stderrTail", "error", "testCommand"):
        if len(encoded) <= limit:
            break
        value = data.get(key)
        if not isinstance(value, str):
            continue
        overflow = len(encoded) - limit
        data[key] = value[overflow:] if overflow < len(value) else ""
        encoded = json.dumps(data)
        # Escapes can make the first cut fall short.
        while len(encoded) > limit and data[key]:
            data[key] = data[key][max(1, len(encoded) - limit):]
            encoded = json.dumps(data)
    return encoded[:limit]
