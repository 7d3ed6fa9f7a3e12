"""Unit tests — collaborators/git.py."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from trigger_relay.collaborators.git import GitClient
from trigger_relay.collaborators.runner import CommandResult
from trigger_relay.exceptions import ExternalProcessError, HandlerTimeoutError


def _runner(result: CommandResult | None = None, error: Exception | None = None) -> MagicMock:
    runner = MagicMock()
    runner.run = AsyncMock(return_value=result, side_effect=error)
    return runner


@pytest.mark.unit
class TestPull:
    async def test_success(self, tmp_path: Path) -> None:
        runner = _runner(CommandResult(["git"], 0, "Already up to date.\n", ""))
        ok, output = await GitClient(tmp_path, runner).pull()
        assert ok
        assert output == "Already up to date."
        command = runner.run.await_args.args[0]
        assert command == ["git", "pull", "--ff-only", "origin"]
        assert runner.run.await_args.kwargs["cwd"] == tmp_path

    async def test_branch_appended(self, tmp_path: Path) -> None:
        runner = _runner(CommandResult(["git"], 0, "", ""))
        await GitClient(tmp_path, runner, remote="upstream", branch="main").pull()
        assert runner.run.await_args.args[0] == ["git", "pull", "--ff-only", "upstream", "main"]

    async def test_failure_reported_not_raised(self, tmp_path: Path) -> None:
        runner = _runner(CommandResult(["git"], 1, "", "fatal: not a git repository"))
        ok, output = await GitClient(tmp_path, runner).pull()
        assert not ok
        assert "not a git repository" in output

    async def test_timeout_reported_not_raised(self, tmp_path: Path) -> None:
        runner = _runner(error=HandlerTimeoutError(["git", "pull"], 5))
        ok, output = await GitClient(tmp_path, runner).pull()
        assert not ok
        assert "timed out" in output


@pytest.mark.unit
class TestReads:
    async def test_head_commit(self, tmp_path: Path) -> None:
        runner = _runner(CommandResult(["git"], 0, "a" * 40 + "\n", ""))
        assert await GitClient(tmp_path, runner).head_commit() == "a" * 40
        assert runner.run.await_args.args[0] == ["git", "rev-parse", "HEAD"]
        assert runner.run.await_args.kwargs["check"] is True

    async def test_last_commit_message(self, tmp_path: Path) -> None:
        runner = _runner(CommandResult(["git"], 0, "Fix crash\n\nLonger body\n", ""))
        assert await GitClient(tmp_path, runner).last_commit_message() == "Fix crash\n\nLonger body"

    async def test_head_failure_propagates(self, tmp_path: Path) -> None:
        runner = _runner(error=ExternalProcessError(["git", "rev-parse", "HEAD"], 128, "fatal"))
        with pytest.raises(ExternalProcessError):
            await GitClient(tmp_path, runner).head_commit()
