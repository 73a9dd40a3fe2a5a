from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class ProjectStage(str, Enum):
    PROTOTYPE = "prototype"
    PRODUCTION = "production"


STAGE_THRESHOLDS: Mapping[ProjectStage, float] = MappingProxyType(
    {
        ProjectStage.PROTOTYPE: 70.0,
        ProjectStage.PRODUCTION: 90.0,
    }
)


@dataclass(frozen=True, slots=True)
class GateVerdict:
    passed: bool
    requires_user_confirmation: bool
    threshold_used: float
    observed_metric: float

    def to_json(self) -> dict[str, object]:
        return {
            "passed": self.passed,
            "requiresUserConfirmation": self.requires_user_confirmation,
            "thresholdUsed": self.threshold_used,
            "observedMetric": self.observed_metric,
        }


def evaluate(
    metric: float,
    stage: ProjectStage,
    has_critical_unresolved_item: bool,
    *,
    thresholds: Mapping[ProjectStage, float] = STAGE_THRESHOLDS,
) -> GateVerdict:
    """Map a compliance metric to a verdict.

    A critical unresolved item fails the gate whatever the metric. A failing
    gate asks the user before an automated fix cycle is started.
    """

    threshold = thresholds[ProjectStage(stage)]
    passed = metric >= threshold and not has_critical_unresolved_item
    return GateVerdict(
        passed=passed,
        requires_user_confirmation=not passed,
        threshold_used=threshold,
        observed_metric=metric,
    )


@dataclass(frozen=True, slots=True)
class GateEvaluator:
    """Pure decision function with a fixed threshold table."""

    thresholds: Mapping[ProjectStage, float] = field(default_factory=lambda: STAGE_THRESHOLDS)

    def evaluate(
        self, metric: float, stage: ProjectStage, has_critical_unresolved_item: bool
    ) -> GateVerdict:
        return evaluate(
            metric, stage, has_critical_unresolved_item, thresholds=self.thresholds
        )

    def threshold_for(self, stage: ProjectStage) -> float:
        return self.thresholds[ProjectStage(stage)]
