from __future__ import annotations

from enum import Enum


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_WORKFLOW_STATES: frozenset[WorkflowStatus] = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.ABORTED}
)


ALLOWED_WORKFLOW_TRANSITIONS: dict[WorkflowStatus, set[WorkflowStatus]] = {
    WorkflowStatus.PENDING: {WorkflowStatus.RUNNING, WorkflowStatus.ABORTED},
    WorkflowStatus.RUNNING: {
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
        WorkflowStatus.ABORTED,
    },
    WorkflowStatus.COMPLETED: set(),
    WorkflowStatus.FAILED: set(),
    WorkflowStatus.ABORTED: set(),
}

# DONE/SKIPPED -> PENDING only happens when a loop region is re-entered.
ALLOWED_STEP_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.RUNNING, StepStatus.SKIPPED},
    StepStatus.RUNNING: {StepStatus.DONE, StepStatus.FAILED},
    StepStatus.DONE: {StepStatus.PENDING},
    StepStatus.SKIPPED: {StepStatus.PENDING},
    StepStatus.FAILED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def transition_workflow(*, current: WorkflowStatus, to: WorkflowStatus) -> WorkflowStatus:
    allowed = ALLOWED_WORKFLOW_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(
            f"Illegal workflow transition: {current.value} -> {to.value}"
        )
    return to


def transition_step(*, current: StepStatus, to: StepStatus) -> StepStatus:
    allowed = ALLOWED_STEP_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal step transition: {current.value} -> {to.value}")
    return to
