"""CommandRunner — run an external command with a timeout.

The command is always passed as a list, never as a shell string.  Output
is captured and decoded with replacement so a build tool emitting odd bytes
cannot break the caller.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path

from trigger_relay.exceptions import ExternalProcessError, HandlerTimeoutError
from trigger_relay.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class CommandRunner:
    def __init__(self, default_timeout: float = 120.0, env: dict[str, str] | None = None) -> None:
        self._default_timeout = default_timeout
        self._env = env

    async def run(
        self,
        command: list[str],
        timeout: float | None = None,
        cwd: Path | str | None = None,
        check: bool = False,
    ) -> CommandResult:
        """Run *command* and return its exit code and output.

        Raises:
            HandlerTimeoutError:  the command did not finish within *timeout*.
            ExternalProcessError: the executable could not be started, or
                                  ``check=True`` and the exit code was non-zero.
        """
        if not command:
            raise ValueError("command must not be empty")
        limit = timeout if timeout is not None else self._default_timeout

        env = os.environ.copy()
        if self._env:
            env.update(self._env)

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
            )
        except OSError as exc:
            raise ExternalProcessError(command, exit_code=None, stderr=str(exc)) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.communicate()
            log.warning("command_timeout", command=command, timeout=limit)
            raise HandlerTimeoutError(command, limit)

        result = CommandResult(
            command=command,
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout_bytes.decode(errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode(errors="replace") if stderr_bytes else "",
        )
        log.debug("command_finished", command=command, exit_code=result.exit_code)
        if check and not result.ok:
            raise ExternalProcessError(command, result.exit_code, result.stderr)
        return result
