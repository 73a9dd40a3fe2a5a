from __future__ import annotations

import json
import logging
from pathlib import Path

from gated_orchestrator.orchestrator.logging import JsonFormatter, configure_logging
from gated_orchestrator.orchestrator.workflow.state_machine import WorkflowStatus


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="gated_orchestrator.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Run %s",
        args=("finished",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extras() -> None:
    line = JsonFormatter().format(
        _record(run_id="abc", status=WorkflowStatus.COMPLETED, path=Path("tasks/task-01.md"))
    )
    payload = json.loads(line)

    assert payload["message"] == "Run finished"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "gated_orchestrator.test"
    assert payload["extra"] == {
        "run_id": "abc",
        "status": "completed",
        "path": "tasks/task-01.md",
    }


def test_json_formatter_without_extras() -> None:
    payload = json.loads(JsonFormatter().format(_record()))
    assert "extra" not in payload


def test_configure_logging_replaces_handlers() -> None:
    configure_logging("debug")
    configure_logging("warning")

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
    assert root.level == logging.WARNING
    assert logging.getLogger("openai").level == logging.WARNING
