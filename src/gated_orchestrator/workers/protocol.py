"""Delegation protocol between the orchestrator and external workers.

A request names a worker type and carries an opaque prompt plus structured
inputs from the workflow context. Each worker type answers with a fixed JSON
schema; anything else is a protocol error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class WorkerType(str, Enum):
    REVIEWER = "reviewer"
    FIXER = "fixer"
    EXECUTOR = "executor"
    QUALITY_CHECKER = "quality-checker"
    TEST_REVIEWER = "test-reviewer"
    SKELETON_GENERATOR = "skeleton-generator"


class FailureKind(str, Enum):
    TIMEOUT = "Timeout"
    PROTOCOL_ERROR = "ProtocolError"
    WORKER_ERROR = "WorkerError"


@dataclass(frozen=True, slots=True)
class DelegationRequest:
    worker_type: WorkerType
    description: str
    prompt: str
    inputs: dict[str, object] = field(default_factory=dict)

    def to_payload(self) -> dict[str, object]:
        return {
            "workerType": self.worker_type.value,
            "description": self.description,
            "prompt": self.prompt,
            "inputs": self.inputs,
        }


@dataclass(frozen=True, slots=True)
class DelegationSuccess:
    outputs: dict[str, object]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class DelegationFailure:
    kind: FailureKind
    message: str

    @property
    def ok(self) -> bool:
        return False


DelegationResult = DelegationSuccess | DelegationFailure


class WorkerOutput(BaseModel):
    """Base for worker response schemas.

    Field names on the wire are camelCase; unknown fields are tolerated but
    dropped from the validated outputs.
    """

    model_config = ConfigDict(strict=True, populate_by_name=True, extra="ignore")


class ReviewerOutput(WorkerOutput):
    compliance_rate: float = Field(alias="complianceRate", ge=0, le=100)
    unfulfilled_items: list[str] = Field(alias="unfulfilledItems")
    # Items that need business-logic or architecture decisions; never auto-fixed.
    critical_items: list[str] = Field(default_factory=list, alias="criticalItems")


class FixerOutput(WorkerOutput):
    status: Literal["success", "partial", "failed"]
    files_modified: list[str] = Field(alias="filesModified")


class QualityCheckOutput(WorkerOutput):
    approved: bool


class SuiteReviewOutput(WorkerOutput):
    status: Literal["approved", "needs_revision"]
    required_fixes: list[str] = Field(alias="requiredFixes")


class SkeletonOutput(WorkerOutput):
    generated_files: list[str] = Field(alias="generatedFiles")


WORKER_OUTPUT_SCHEMAS: dict[WorkerType, type[WorkerOutput]] = {
    WorkerType.REVIEWER: ReviewerOutput,
    WorkerType.FIXER: FixerOutput,
    WorkerType.EXECUTOR: FixerOutput,
    WorkerType.QUALITY_CHECKER: QualityCheckOutput,
    WorkerType.TEST_REVIEWER: SuiteReviewOutput,
    WorkerType.SKELETON_GENERATOR: SkeletonOutput,
}


def describe_schema(worker_type: WorkerType) -> str:
    """Return a short JSON description of the expected response, for prompts."""

    schema = WORKER_OUTPUT_SCHEMAS[worker_type]
    parts: list[str] = []
    for name, info in schema.model_fields.items():
        key = info.alias or name
        annotation = getattr(info.annotation, "__name__", None) or str(info.annotation)
        optional = "" if info.is_required() else "?"
        parts.append(f'"{key}"{optional}: {annotation}')
    return "{" + ", ".join(parts) + "}"
