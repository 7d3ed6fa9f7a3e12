"""External collaborators: version control, process table, command runner."""

from trigger_relay.collaborators.git import GitClient
from trigger_relay.collaborators.process import ProcessTable
from trigger_relay.collaborators.runner import CommandResult, CommandRunner

__all__ = ["CommandResult", "CommandRunner", "GitClient", "ProcessTable"]
