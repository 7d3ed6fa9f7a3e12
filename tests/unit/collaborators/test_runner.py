"""Unit tests — collaborators/runner.py (spawns real subprocesses)."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from trigger_relay.collaborators.runner import CommandResult, CommandRunner
from trigger_relay.exceptions import ExternalProcessError, HandlerTimeoutError

PY = sys.executable


@pytest.mark.unit
class TestCommandRunner:
    async def test_captures_stdout(self) -> None:
        result = await CommandRunner().run([PY, "-c", "print('hello')"])
        assert result.ok
        assert result.stdout.strip() == "hello"

    async def test_non_zero_exit_returned(self) -> None:
        code = "import sys; sys.stderr.write('bad things'); sys.exit(3)"
        result = await CommandRunner().run([PY, "-c", code])
        assert result.exit_code == 3
        assert not result.ok
        assert "bad things" in result.stderr

    async def test_check_raises_on_failure(self) -> None:
        with pytest.raises(ExternalProcessError) as exc_info:
            await CommandRunner().run([PY, "-c", "raise SystemExit(2)"], check=True)
        assert exc_info.value.exit_code == 2

    async def test_timeout_kills_process(self) -> None:
        with pytest.raises(HandlerTimeoutError) as exc_info:
            await CommandRunner().run([PY, "-c", "import time; time.sleep(10)"], timeout=0.3)
        assert exc_info.value.timeout == 0.3

    async def test_missing_executable(self) -> None:
        with pytest.raises(ExternalProcessError):
            await CommandRunner().run(["definitely-not-a-real-binary-xyz"])

    async def test_cwd_and_env(self, tmp_path: Path) -> None:
        runner = CommandRunner(env={"RELAY_TEST_VALUE": "42"})
        code = "import os; print(os.getcwd()); print(os.environ['RELAY_TEST_VALUE'])"
        result = await runner.run([PY, "-c", code], cwd=tmp_path)
        cwd, value = result.stdout.split()
        assert Path(cwd).resolve() == tmp_path.resolve()
        assert value == "42"

    async def test_empty_command_rejected(self) -> None:
        with pytest.raises(ValueError):
            await CommandRunner().run([])


@pytest.mark.unit
class TestCommandResult:
    def test_output_joins_streams(self) -> None:
        result = CommandResult(["x"], 0, "out\n", "err\n")
        assert result.output == "out\nerr"

    def test_output_skips_empty(self) -> None:
        assert CommandResult(["x"], 0, "", "err").output == "err"
