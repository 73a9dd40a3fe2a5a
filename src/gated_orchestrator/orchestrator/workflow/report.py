"""Final run report."""

from __future__ import annotations

from pydantic import BaseModel, Field

from gated_orchestrator.orchestrator.workflow.gate import GateVerdict
from gated_orchestrator.orchestrator.workflow.state_machine import WorkflowStatus
from gated_orchestrator.orchestrator.workflow.steps import Workflow

# Context keys read by the report builder. Workflow definitions write them.
CTX_INITIAL_METRIC = "initial_metric"
CTX_FINAL_METRIC = "final_metric"
CTX_UNRESOLVED_ITEMS = "unresolved_items"
CTX_MANUAL_ITEMS = "manual_action_items"
CTX_FAILED_ITEMS = "failed_items"
CTX_TASK_FILE = "task_file"

# Written by the engine.
CTX_STAGE = "stage"
CTX_GATE_VERDICT = "gate_verdict"
CTX_GATE_HISTORY = "gate_history"


class Report(BaseModel):
    workflow: str
    run_id: str
    status: WorkflowStatus
    stage: str | None = None
    threshold: float | None = None

    initial_metric: float | None = None
    final_metric: float | None = None
    # Absent (not zero) when no fix cycle produced a final metric.
    delta: float | None = None

    remaining_issues: list[str] = Field(default_factory=list)
    manual_action_items: list[str] = Field(default_factory=list)
    failed_items: list[str] = Field(default_factory=list)

    iterations: dict[str, int] = Field(default_factory=dict)
    failure_kind: str | None = None
    failure_message: str | None = None
    task_file: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is WorkflowStatus.COMPLETED

    def summary_lines(self) -> list[str]:
        lines = [f"Workflow {self.workflow} ({self.run_id}): {self.status.value}"]
        run_failure = None
        if self.failure_kind:
            run_failure = f"{self.failure_kind}: {self.failure_message}"
            lines.append(f"Failure: {run_failure}")
        if self.initial_metric is not None:
            line = f"Compliance: {self.initial_metric:g}%"
            if self.final_metric is not None:
                line = (
                    f"Compliance: {self.initial_metric:g}% -> {self.final_metric:g}% "
                    f"(delta {self.delta:+g})"
                )
            if self.threshold is not None:
                line += f" [threshold {self.threshold:g}%, stage {self.stage}]"
            lines.append(line)
        if self.task_file:
            lines.append(f"Task file: {self.task_file}")
        if self.manual_action_items:
            lines.append("Requires manual action:")
            lines += [f"  - {item}" for item in self.manual_action_items]
        unresolved = [
            i
            for i in self.remaining_issues
            if i not in self.manual_action_items and i not in self.failed_items
        ]
        if unresolved:
            lines.append("Unresolved:")
            lines += [f"  - {item}" for item in unresolved]
        fix_failures = [i for i in self.failed_items if i != run_failure]
        if fix_failures:
            lines.append("Failed during automated fixing:")
            lines += [f"  - {item}" for item in fix_failures]
        return lines


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _strings(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


class ReportBuilder:
    def build(self, workflow: Workflow) -> Report:
        ctx = workflow.context

        initial = _number(ctx.get(CTX_INITIAL_METRIC))
        final = _number(ctx.get(CTX_FINAL_METRIC))
        delta = final - initial if initial is not None and final is not None else None

        manual = _strings(ctx.get(CTX_MANUAL_ITEMS))
        unresolved = [i for i in _strings(ctx.get(CTX_UNRESOLVED_ITEMS)) if i not in manual]
        failed = _strings(ctx.get(CTX_FAILED_ITEMS))
        if workflow.failure is not None:
            failed.append(f"{workflow.failure.kind}: {workflow.failure.message}")

        remaining: list[str] = []
        for item in [*manual, *unresolved, *failed]:
            if item not in remaining:
                remaining.append(item)

        verdict = ctx.get(CTX_GATE_VERDICT)
        threshold = verdict.threshold_used if isinstance(verdict, GateVerdict) else None
        stage = ctx.get(CTX_STAGE)
        task_file = ctx.get(CTX_TASK_FILE)

        return Report(
            workflow=workflow.name,
            run_id=workflow.run_id,
            status=workflow.status,
            stage=str(stage) if stage is not None else None,
            threshold=threshold,
            initial_metric=initial,
            final_metric=final,
            delta=delta,
            remaining_issues=remaining,
            manual_action_items=manual,
            failed_items=failed,
            iterations=dict(workflow.iterations),
            failure_kind=workflow.failure.kind if workflow.failure else None,
            failure_message=workflow.failure.message if workflow.failure else None,
            task_file=str(task_file) if task_file is not None else None,
        )
