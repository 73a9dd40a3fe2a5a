from __future__ import annotations

import pytest

from gated_orchestrator.orchestrator.workflow.gate import (
    STAGE_THRESHOLDS,
    GateEvaluator,
    ProjectStage,
    evaluate,
)


@pytest.mark.parametrize(
    ("metric", "stage", "passed"),
    [
        (70.0, ProjectStage.PROTOTYPE, True),
        (69.9, ProjectStage.PROTOTYPE, False),
        (89.0, ProjectStage.PRODUCTION, False),
        (90.0, ProjectStage.PRODUCTION, True),
        (0.0, ProjectStage.PROTOTYPE, False),
        (100.0, ProjectStage.PRODUCTION, True),
    ],
)
def test_threshold_is_inclusive_per_stage(metric: float, stage: ProjectStage, passed: bool) -> None:
    verdict = evaluate(metric, stage, False)

    assert verdict.passed is passed
    assert verdict.requires_user_confirmation is (not passed)
    assert verdict.observed_metric == metric


def test_thresholds_by_stage() -> None:
    gate = GateEvaluator()
    assert gate.threshold_for(ProjectStage.PROTOTYPE) == 70.0
    assert gate.threshold_for(ProjectStage.PRODUCTION) == 90.0
    assert gate.threshold_for("production") == 90.0  # type: ignore[arg-type]


def test_critical_item_fails_even_at_full_compliance() -> None:
    verdict = evaluate(100.0, ProjectStage.PROTOTYPE, True)

    assert verdict.passed is False
    assert verdict.requires_user_confirmation is True
    assert verdict.threshold_used == 70.0


def test_evaluation_is_pure() -> None:
    gate = GateEvaluator()
    first = gate.evaluate(75.0, ProjectStage.PROTOTYPE, False)
    second = gate.evaluate(75.0, ProjectStage.PROTOTYPE, False)

    assert first == second
    assert first.to_json() == {
        "passed": True,
        "requiresUserConfirmation": False,
        "thresholdUsed": 70.0,
        "observedMetric": 75.0,
    }


def test_custom_threshold_table() -> None:
    gate = GateEvaluator(thresholds={ProjectStage.PROTOTYPE: 50.0, ProjectStage.PRODUCTION: 95.0})

    assert gate.evaluate(50.0, ProjectStage.PROTOTYPE, False).passed
    assert not gate.evaluate(94.0, ProjectStage.PRODUCTION, False).passed


def test_default_evaluators_share_the_read_only_stage_table() -> None:
    first, second = GateEvaluator(), GateEvaluator()

    assert first.thresholds is STAGE_THRESHOLDS
    assert second.thresholds is STAGE_THRESHOLDS
    with pytest.raises(TypeError):
        first.thresholds[ProjectStage.PROTOTYPE] = 0.0  # type: ignore[index]
