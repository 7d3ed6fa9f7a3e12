"""Commit watching: classify new commits and emit triggers for them."""

from trigger_relay.commits.classify import classify, classify_action, classify_priority
from trigger_relay.commits.watcher import CommitWatcher

__all__ = ["CommitWatcher", "classify", "classify_action", "classify_priority"]
