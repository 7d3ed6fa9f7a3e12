"""Named trigger templates.

A template supplies defaults for ``action``, ``priority`` and
``filesToCheck``.  Explicit values passed to the writer always win.
"""

from __future__ import annotations

from dataclasses import dataclass

from trigger_relay.triggers.models import TriggerAction, TriggerPriority


@dataclass(frozen=True)
class TriggerTemplate:
    name: str
    description: str
    action: TriggerAction
    priority: TriggerPriority
    files_to_check: tuple[str, ...]


_RESULT_FILES = ("test-results/**/*.json", "test-results/**/*.log")

TEMPLATES: dict[str, TriggerTemplate] = {
    t.name: t
    for t in (
        TriggerTemplate(
            name="test-analysis",
            description="Analyse the newest test result file after a test run.",
            action=TriggerAction.ANALYZE_TEST_RESULTS,
            priority=TriggerPriority.NORMAL,
            files_to_check=_RESULT_FILES,
        ),
        TriggerTemplate(
            name="quick-test",
            description="Fast smoke-test results only.",
            action=TriggerAction.ANALYZE_TEST_RESULTS,
            priority=TriggerPriority.LOW,
            files_to_check=("test-results/smoke/*.json",),
        ),
        TriggerTemplate(
            name="full-analysis",
            description="Full suite results plus build logs.",
            action=TriggerAction.ANALYZE_TEST_RESULTS,
            priority=TriggerPriority.HIGH,
            files_to_check=(*_RESULT_FILES, "build-logs/**/*.log"),
        ),
        TriggerTemplate(
            name="deploy",
            description="Fixes are committed and ready for deployment.",
            action=TriggerAction.DEPLOY_FIXES,
            priority=TriggerPriority.HIGH,
            files_to_check=("**/*.dll", "**/*.lsp"),
        ),
        TriggerTemplate(
            name="run-tests",
            description="Ask the test machine to run the suite.",
            action=TriggerAction.RUN_TESTS,
            priority=TriggerPriority.NORMAL,
            files_to_check=("tests/**/*",),
        ),
        TriggerTemplate(
            name="custom",
            description="Free-form trigger; pass customData.",
            action=TriggerAction.CUSTOM,
            priority=TriggerPriority.NORMAL,
            files_to_check=("**/*",),
        ),
    )
}


def get_template(name: str) -> TriggerTemplate | None:
    return TEMPLATES.get(name)


def list_templates() -> list[TriggerTemplate]:
    return sorted(TEMPLATES.values(), key=lambda t: t.name)
