"""Worker package initialization."""

from gated_orchestrator.workers.client import Worker, WorkerClient
from gated_orchestrator.workers.protocol import (
    DelegationFailure,
    DelegationRequest,
    DelegationResult,
    DelegationSuccess,
    FailureKind,
    WorkerType,
)
from gated_orchestrator.workers.transport import WorkerTransport

__all__ = [
    "DelegationFailure",
    "DelegationRequest",
    "DelegationResult",
    "DelegationSuccess",
    "FailureKind",
    "Worker",
    "WorkerClient",
    "WorkerTransport",
    "WorkerType",
]
