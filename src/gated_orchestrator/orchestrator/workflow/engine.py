"""Sequential workflow engine.

The engine owns control flow only. Domain work happens behind the `Worker`
boundary; decisions come from the gate evaluator or from branch predicates.
Exactly one step runs at a time, and the only call that may block for long is
`Worker.invoke`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime

from gated_orchestrator.orchestrator.errors import (
    DelegationFailed,
    LoopBudgetExceeded,
    NotFoundError,
    OrchestratorError,
)
from gated_orchestrator.orchestrator.workflow.gate import GateEvaluator, ProjectStage
from gated_orchestrator.orchestrator.workflow.report import (
    CTX_GATE_HISTORY,
    CTX_GATE_VERDICT,
    CTX_STAGE,
    Report,
    ReportBuilder,
)
from gated_orchestrator.orchestrator.workflow.state_machine import (
    StepStatus,
    WorkflowStatus,
    transition_step,
    transition_workflow,
)
from gated_orchestrator.orchestrator.workflow.steps import (
    RunFailure,
    Step,
    StepKind,
    Workflow,
)
from gated_orchestrator.workers.client import Worker
from gated_orchestrator.workers.protocol import DelegationFailure, DelegationRequest

logger = logging.getLogger(__name__)

Listener = Callable[[Workflow], None]

# Failure kind for exceptions raised outside the error taxonomy.
INTERNAL_ERROR = "InternalError"


class WorkflowEngine:
    def __init__(
        self,
        *,
        worker: Worker,
        stage: ProjectStage,
        gate: GateEvaluator | None = None,
        reports: ReportBuilder | None = None,
        listener: Listener | None = None,
    ) -> None:
        self._worker = worker
        self._stage = ProjectStage(stage)
        self._gate = gate or GateEvaluator()
        self._reports = reports or ReportBuilder()
        self._listener = listener

    @property
    def stage(self) -> ProjectStage:
        return self._stage

    def run(self, workflow: Workflow) -> Report:
        """Execute the workflow to a terminal state and build its report."""

        workflow.registry.validate()
        workflow.context.setdefault(CTX_STAGE, self._stage.value)
        workflow.started_at = datetime.now(tz=UTC)

        if workflow.abort_requested:
            self._set_status(workflow, WorkflowStatus.ABORTED)
        else:
            self._set_status(workflow, WorkflowStatus.RUNNING)
            logger.info(
                "Workflow started",
                extra={"workflow": workflow.name, "run_id": workflow.run_id},
            )
            self._drive(workflow)

        workflow.finished_at = datetime.now(tz=UTC)
        self._notify(workflow)
        report = self._reports.build(workflow)
        logger.info(
            "Workflow finished",
            extra={
                "workflow": workflow.name,
                "run_id": workflow.run_id,
                "status": workflow.status.value,
                "iterations": dict(workflow.iterations),
            },
        )
        return report

    # -- control flow ---------------------------------------------------------

    def _drive(self, workflow: Workflow) -> None:
        steps = workflow.steps
        index = 0
        current: Step | None = None
        try:
            while index < len(steps):
                if workflow.abort_requested:
                    logger.info("Workflow aborted", extra={"run_id": workflow.run_id})
                    self._set_status(workflow, WorkflowStatus.ABORTED)
                    return

                step = steps[index]
                if step.status is not StepStatus.PENDING:
                    index += 1
                    continue

                if not self._dependencies_done(workflow, step):
                    logger.info(
                        "Skipping step with unmet dependencies",
                        extra={"run_id": workflow.run_id, "step": step.name},
                    )
                    self._set_step(workflow, step, StepStatus.SKIPPED)
                    index += 1
                    continue

                current = step
                self._enter_loop(workflow, index)
                self._set_step(workflow, step, StepStatus.RUNNING)
                next_index = self._execute(workflow, step, index)
                self._set_step(workflow, step, StepStatus.DONE)
                current = None

                if step.kind is StepKind.TERMINAL:
                    self._set_status(workflow, WorkflowStatus.COMPLETED)
                    return

                index = self._jump(workflow, from_index=index, to_index=next_index)

            # Ran off the end: the terminal step was skipped by a jump past it.
            self._set_status(workflow, WorkflowStatus.COMPLETED)
        except OrchestratorError as e:
            self._fail(workflow, current, kind=e.kind, message=str(e))
        except Exception as e:
            logger.exception(
                "Step raised an unexpected error",
                extra={"run_id": workflow.run_id, "step": current.name if current else None},
            )
            self._fail(workflow, current, kind=INTERNAL_ERROR, message=f"{type(e).__name__}: {e}")

    def _dependencies_done(self, workflow: Workflow, step: Step) -> bool:
        steps = workflow.steps
        return all(steps[dep - 1].status is StepStatus.DONE for dep in step.depends_on)

    def _enter_loop(self, workflow: Workflow, index: int) -> None:
        registry = workflow.registry
        region = registry.loop_starting_at(index)
        if region is None:
            return
        count = workflow.iterations.get(region.name, 0) + 1
        if count > region.max_iterations:
            raise LoopBudgetExceeded(region.name, region.max_iterations)
        workflow.iterations[region.name] = count
        logger.info(
            "Loop iteration started",
            extra={
                "run_id": workflow.run_id,
                "loop": region.name,
                "iteration": count,
                "max_iterations": region.max_iterations,
            },
        )

    def _jump(self, workflow: Workflow, *, from_index: int, to_index: int) -> int:
        steps = workflow.steps
        if to_index > from_index:
            for skipped in steps[from_index + 1 : to_index]:
                if skipped.status is StepStatus.PENDING:
                    self._set_step(workflow, skipped, StepStatus.SKIPPED)
            return to_index

        # Backward jump: re-enter a loop region (validated to start at to_index).
        registry = workflow.registry
        region = registry.loop_starting_at(to_index)
        span = (
            registry.loop_range(region)
            if region is not None
            else range(to_index, from_index + 1)
        )
        for step in steps[span.start : span.stop]:
            if step.status in (StepStatus.DONE, StepStatus.SKIPPED):
                self._set_step(workflow, step, StepStatus.PENDING)
        # Loops nested inside the re-entered region start their budget afresh.
        for inner in registry.loops:
            if inner is region:
                continue
            inner_range = registry.loop_range(inner)
            if inner_range.start > span.start and inner_range.stop <= span.stop:
                workflow.iterations.pop(inner.name, None)
        return to_index

    # -- step execution -------------------------------------------------------

    def _execute(self, workflow: Workflow, step: Step, index: int) -> int:
        registry = workflow.registry
        next_index = index + 1

        if step.kind in (StepKind.ACTION, StepKind.TERMINAL):
            if step.action is not None:
                self._merge(workflow, step.action(workflow.context))
            return next_index

        if step.kind is StepKind.DELEGATE:
            assert step.request is not None
            self._delegate(workflow, step)
            return next_index

        if step.kind is StepKind.GATE:
            assert step.metric_key is not None
            metric = workflow.context.get(step.metric_key)
            if isinstance(metric, bool) or not isinstance(metric, (int, float)):
                raise NotFoundError(
                    f"Gate {step.name!r} needs numeric context value {step.metric_key!r}"
                )
            critical = bool(workflow.context.get(step.critical_key)) if step.critical_key else False
            verdict = self._gate.evaluate(float(metric), self._stage, critical)
            workflow.context[CTX_GATE_VERDICT] = verdict
            history = workflow.context.setdefault(CTX_GATE_HISTORY, [])
            assert isinstance(history, list)
            history.append({"step": step.name, **verdict.to_json()})
            logger.info(
                "Gate evaluated",
                extra={
                    "run_id": workflow.run_id,
                    "step": step.name,
                    "stage": self._stage.value,
                    **verdict.to_json(),
                },
            )
            if verdict.passed:
                return (
                    registry.index_of(step.on_true)
                    if step.on_true
                    else registry.terminal_index()
                )
            return registry.index_of(step.on_false) if step.on_false else next_index

        if step.kind is StepKind.BRANCH:
            assert step.predicate is not None
            decision = bool(step.predicate(workflow.context))
            logger.info(
                "Branch evaluated",
                extra={"run_id": workflow.run_id, "step": step.name, "decision": decision},
            )
            target = step.on_true if decision else step.on_false
            return registry.index_of(target) if target else next_index

        raise ValueError(f"Unsupported step kind: {step.kind}")

    def _delegate(self, workflow: Workflow, step: Step) -> None:
        assert step.request is not None
        produced = step.request(workflow.context)
        requests: Sequence[DelegationRequest] = (
            [produced] if isinstance(produced, DelegationRequest) else list(produced)
        )

        outputs: list[dict[str, object]] = []
        for request in requests:
            result = self._worker.invoke(request)
            if isinstance(result, DelegationFailure):
                raise DelegationFailed(
                    kind=result.kind.value,
                    message=result.message,
                    worker_type=request.worker_type.value,
                )
            outputs.append(result.outputs)

        if step.on_outputs is not None:
            self._merge(workflow, step.on_outputs(workflow.context, outputs))
        else:
            workflow.context[step.name] = outputs

    @staticmethod
    def _merge(workflow: Workflow, updates: Mapping[str, object] | None) -> None:
        if updates:
            workflow.context.update(updates)

    # -- status bookkeeping ---------------------------------------------------

    def _fail(
        self, workflow: Workflow, step: Step | None, *, kind: str, message: str
    ) -> None:
        if step is not None and step.status is StepStatus.RUNNING:
            self._set_step(workflow, step, StepStatus.FAILED)
        workflow.failure = RunFailure(
            kind=kind,
            message=message,
            step=step.name if step is not None else None,
        )
        logger.error(
            "Workflow failed",
            extra={
                "run_id": workflow.run_id,
                "workflow": workflow.name,
                "step": step.name if step is not None else None,
                "kind": kind,
                "error": message,
            },
        )
        self._set_status(workflow, WorkflowStatus.FAILED)

    def _set_status(self, workflow: Workflow, to: WorkflowStatus) -> None:
        workflow.status = transition_workflow(current=workflow.status, to=to)
        self._notify(workflow)

    def _set_step(self, workflow: Workflow, step: Step, to: StepStatus) -> None:
        step.status = transition_step(current=step.status, to=to)
        self._notify(workflow)

    def _notify(self, workflow: Workflow) -> None:
        if self._listener is None:
            return
        try:
            self._listener(workflow)
        except Exception:
            # Observers must not change the outcome of a run.
            logger.exception("Workflow listener failed", extra={"run_id": workflow.run_id})
