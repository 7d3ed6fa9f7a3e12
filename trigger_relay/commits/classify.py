"""Commit message classification.

Action and priority are decided independently.

Action — ordered rules, first match wins::

    run_tests             a test-activity verb followed later by "test"/"tests"
                          ("add unit tests for parser", "rerun the tests")
    analyze_test_results  mentions test, result or analysis
    deploy_fixes          mentions fix, deploy or update
    analyze_test_results  fallback

Priority — ``high`` if any urgency keyword appears, else ``normal``.

Matching is case-insensitive.  Keyword rules match substrings, so "hotfix"
counts as "fix" and "updated" as "update".
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from trigger_relay.triggers.models import TriggerAction, TriggerPriority

_TEST_ACTIVITY = re.compile(
    r"\b(?:run|runs|running|execute|executes|executing|add|adds|added|adding|"
    r"write|writes|wrote|rerun|reran)\b.*\btests?\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    action: TriggerAction
    pattern: re.Pattern[str]

    def matches(self, message: str) -> bool:
        return self.pattern.search(message) is not None


def _keywords(*words: str) -> re.Pattern[str]:
    return re.compile("|".join(re.escape(w) for w in words), re.IGNORECASE)


ACTION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("test-activity", TriggerAction.RUN_TESTS, _TEST_ACTIVITY),
    ClassificationRule(
        "results", TriggerAction.ANALYZE_TEST_RESULTS, _keywords("test", "result", "analysis")
    ),
    ClassificationRule("fixes", TriggerAction.DEPLOY_FIXES, _keywords("fix", "deploy", "update")),
)

DEFAULT_ACTION = TriggerAction.ANALYZE_TEST_RESULTS

HIGH_PRIORITY_KEYWORDS: tuple[str, ...] = (
    "critical",
    "urgent",
    "emergency",
    "hotfix",
    "important",
    "priority",
)
_HIGH_PRIORITY = _keywords(*HIGH_PRIORITY_KEYWORDS)


def classify_action(message: str) -> TriggerAction:
    for rule in ACTION_RULES:
        if rule.matches(message):
            return rule.action
    return DEFAULT_ACTION


def classify_priority(message: str) -> TriggerPriority:
    if _HIGH_PRIORITY.search(message):
        return TriggerPriority.HIGH
    return TriggerPriority.NORMAL


def classify(message: str) -> tuple[TriggerAction, TriggerPriority]:
    """Return ``(action, priority)`` for a commit message."""
    return classify_action(message), classify_priority(message)
