"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from gated_orchestrator.orchestrator.workflow.state_machine import WorkflowStatus

WorkflowName = Literal["review", "add-tests"]


class RunRequest(BaseModel):
    workflow: WorkflowName
    design_doc: str | None = None
    auto_confirm: bool = False
    max_iterations: int | None = Field(default=None, ge=1, le=20)


class ApiRun(BaseModel):
    run_id: str
    workflow: str
    status: WorkflowStatus
    created_at: str
    updated_at: str

    design_doc: str | None = None
    steps: list[dict[str, object]] = Field(default_factory=list)
    iterations: dict[str, int] = Field(default_factory=dict)
    report: dict[str, object] | None = None
    error: str | None = None


class ApiTaskItem(BaseModel):
    text: str
    done: bool


class ApiTaskFile(BaseModel):
    path: str
    name: str
    type: str
    objective: str
    target_files: list[str]
    tasks: list[ApiTaskItem]
    acceptance_criteria: list[str]
