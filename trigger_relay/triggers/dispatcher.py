"""ActionDispatcher — route a validated trigger to its handler.

Routing is a plain ``TriggerAction → Handler`` table.  A handler is any
async callable::

    async def handler(message: TriggerMessage) -> HandlerResult: ...

Only ``analyze_test_results`` has a real handler.  ``deploy_fixes``,
``run_tests`` and ``custom`` are extension points that answer
``not_implemented`` until someone registers a handler, so callers can tell
"nothing ran" apart from "ran and found nothing".

The dispatcher is the boundary where handler exceptions stop: every
exception becomes a failed :class:`HandlerResult` and the watcher loop keeps
going.
"""

from __future__ import annotations

import asyncio
import glob
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from pathlib import Path

from trigger_relay.collaborators.git import GitClient
from trigger_relay.exceptions import ExternalProcessError, HandlerTimeoutError, TriggerRelayError
from trigger_relay.logging import get_logger
from trigger_relay.triggers.models import (
    HandlerResult,
    HandlerStatus,
    TriggerAction,
    TriggerMessage,
)
from trigger_relay.triggers.notify import AnalysisReadyNotification, NotificationSink

log = get_logger(__name__)

Handler = Callable[[TriggerMessage], Awaitable[HandlerResult]]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class NotImplementedHandler:
    """Placeholder for actions with no implementation yet."""

    def __init__(self, action: TriggerAction) -> None:
        self.action = action

    async def __call__(self, message: TriggerMessage) -> HandlerResult:
        return HandlerResult(
            status=HandlerStatus.NOT_IMPLEMENTED,
            detail=f"No handler implemented for action '{self.action.value}'",
        )


class AnalyzeTestResultsHandler:
    """Pull, pick the newest result file, and announce it.

    Steps:
      1. ``git pull`` so the result files committed by the test machine
         are present locally.  A failed pull fails the dispatch.
      2. Expand every ``filesToCheck`` glob relative to the repository
         in a worker thread.
      3. Pick the newest file across all patterns (see :func:`select_newest`).
      4. Send an :class:`AnalysisReadyNotification` to the sink.
    """

    def __init__(
        self,
        git: GitClient,
        sink: NotificationSink,
        base_dir: Path | None = None,
        pull: bool = True,
    ) -> None:
        self._git = git
        self._sink = sink
        self._base_dir = base_dir if base_dir is not None else git.repo_path
        self._pull = pull

    async def __call__(self, message: TriggerMessage) -> HandlerResult:
        if self._pull:
            ok, output = await self._git.pull()
            if not ok:
                raise ExternalProcessError(
                    ["git", "pull"],
                    exit_code=None,
                    stderr=output,
                    message=f"Repository pull failed: {output.strip()[:200]}",
                )

        # A recursive glob over a large repository must not stall the event loop.
        selected = await asyncio.to_thread(select_newest, self._base_dir, message.files_to_check)
        if selected is None:
            return HandlerResult(
                status=HandlerStatus.NO_RESULTS,
                detail="No files matched filesToCheck",
                data={"patterns": list(message.files_to_check), "base_dir": str(self._base_dir)},
            )

        await self._sink.send(
            AnalysisReadyNotification(
                trigger_id=message.id,
                commit_hash=message.commit_hash,
                selected_file=str(selected),
                timestamp=message.timestamp,
                timezone=message.timezone,
                priority=message.priority,
            )
        )
        return HandlerResult.completed(
            detail=f"Analysis ready: {selected}",
            selected_file=str(selected),
            commit_hash=message.commit_hash,
        )


# ---------------------------------------------------------------------------
# File selection
# ---------------------------------------------------------------------------


def expand_patterns(base_dir: Path, patterns: Iterable[str]) -> list[Path]:
    """Files matched by any of *patterns* (``**`` recurses).  No duplicates."""
    seen: set[Path] = set()
    matches: list[Path] = []
    for pattern in patterns:
        full = pattern if Path(pattern).is_absolute() else str(base_dir / pattern)
        for hit in glob.glob(full, recursive=True):
            path = Path(hit)
            if path in seen or not path.is_file():
                continue
            seen.add(path)
            matches.append(path)
    return matches


def select_newest(base_dir: Path, patterns: Iterable[str]) -> Path | None:
    """Most recently modified file across *patterns*.

    Ties on modification time go to the path that sorts greatest as a
    string, so the choice never depends on filesystem listing order.
    """
    ranked: list[tuple[int, str, Path]] = []
    for path in expand_patterns(base_dir, patterns):
        try:
            ranked.append((path.stat().st_mtime_ns, str(path), path))
        except FileNotFoundError:
            continue
    if not ranked:
        return None
    return max(ranked)[2]


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class ActionDispatcher:
    """Maps each :class:`TriggerAction` to a handler and runs it.

    Usage::

        dispatcher = ActionDispatcher(timeout=300)
        dispatcher.register(TriggerAction.ANALYZE_TEST_RESULTS, AnalyzeTestResultsHandler(git, sink))
        result = await dispatcher.dispatch(message)
    """

    def __init__(
        self,
        handlers: Mapping[TriggerAction, Handler] | None = None,
        timeout: float | None = None,
    ) -> None:
        self._handlers: dict[TriggerAction, Handler] = {
            action: NotImplementedHandler(action) for action in TriggerAction
        }
        if handlers:
            self._handlers.update(handlers)
        self._timeout = timeout

    def register(self, action: TriggerAction, handler: Handler) -> None:
        self._handlers[action] = handler

    def handler_for(self, action: TriggerAction) -> Handler:
        return self._handlers[action]

    async def dispatch(self, message: TriggerMessage) -> HandlerResult:
        handler = self._handlers[message.action]
        start = time.monotonic()
        try:
            if self._timeout is not None:
                result = await asyncio.wait_for(handler(message), timeout=self._timeout)
            else:
                result = await handler(message)
        except asyncio.TimeoutError:
            result = HandlerResult(
                status=HandlerStatus.TIMEOUT,
                detail=f"Handler for '{message.action.value}' exceeded {self._timeout}s",
            )
        except HandlerTimeoutError as exc:
            result = HandlerResult(status=HandlerStatus.TIMEOUT, detail=exc.message, data=exc.context)
        except ExternalProcessError as exc:
            result = HandlerResult.failed(exc.message, **exc.context)
        except TriggerRelayError as exc:
            result = HandlerResult.failed(exc.message, **exc.context)
        except Exception as exc:
            log.exception("handler_crashed", trigger_id=message.id, action=message.action.value)
            result = HandlerResult.failed(f"{type(exc).__name__}: {exc}")

        log.info(
            "trigger_dispatched",
            trigger_id=message.id,
            action=message.action.value,
            status=result.status.value,
            detail=result.detail,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return result
