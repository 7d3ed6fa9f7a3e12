"""GitClient — the version-control operations the relay consumes.

Only three operations are needed: pull, read HEAD, read the HEAD commit
message.  Everything goes through :class:`CommandRunner`.
"""

from __future__ import annotations

from pathlib import Path

from trigger_relay.collaborators.runner import CommandRunner
from trigger_relay.exceptions import ExternalProcessError


class GitClient:
    def __init__(
        self,
        repo_path: Path,
        runner: CommandRunner | None = None,
        remote: str = "origin",
        branch: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._repo = repo_path
        self._runner = runner or CommandRunner(default_timeout=timeout)
        self._remote = remote
        self._branch = branch
        self._timeout = timeout

    @property
    def repo_path(self) -> Path:
        return self._repo

    async def pull(self) -> tuple[bool, str]:
        """Fast-forward the working copy.  Never raises on a failed pull."""
        command = ["git", "pull", "--ff-only", self._remote]
        if self._branch:
            command.append(self._branch)
        try:
            result = await self._runner.run(command, timeout=self._timeout, cwd=self._repo)
        except ExternalProcessError as exc:
            return False, exc.message
        return result.ok, result.output

    async def head_commit(self) -> str:
        """Return the full hash of HEAD.

        Raises:
            ExternalProcessError: git failed.
        """
        result = await self._git("rev-parse", "HEAD")
        return result.strip()

    async def last_commit_message(self) -> str:
        """Return the full message of the HEAD commit."""
        result = await self._git("log", "-1", "--pretty=%B")
        return result.strip()

    async def _git(self, *args: str) -> str:
        result = await self._runner.run(
            ["git", *args], timeout=self._timeout, cwd=self._repo, check=True
        )
        return result.stdout
