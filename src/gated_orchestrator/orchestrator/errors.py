"""Error taxonomy for workflow runs.

Every error here is fatal to the run that raised it. The engine converts them
into a failed workflow and surfaces `kind` and the message in the report.
"""

from __future__ import annotations

from typing import ClassVar


class OrchestratorError(Exception):
    """Base class for run-fatal errors."""

    kind: ClassVar[str] = "OrchestratorError"


class NotFoundError(OrchestratorError):
    """A design document or task file does not exist."""

    kind = "NotFound"


class ParseError(OrchestratorError):
    """A persisted document or worker response is malformed."""

    kind = "ParseError"


class ProtocolError(ParseError):
    """A worker response does not match the schema of its worker type."""

    kind = "ProtocolError"


class WorkerTimeoutError(OrchestratorError):
    kind = "Timeout"


class WorkerError(OrchestratorError):
    """The worker reported an internal failure."""

    kind = "WorkerError"


class LoopBudgetExceeded(OrchestratorError):
    kind = "LoopBudgetExceeded"

    def __init__(self, loop: str, max_iterations: int) -> None:
        super().__init__(
            f"Loop {loop!r} did not converge within {max_iterations} iteration(s)"
        )
        self.loop = loop
        self.max_iterations = max_iterations


class AlreadyExists(OrchestratorError):
    """Raised when a task file path is already taken. Nothing is overwritten."""

    kind = "AlreadyExists"

    def __init__(self, path: object) -> None:
        super().__init__(f"Task file already exists: {path}")
        self.path = path


class DelegationFailed(OrchestratorError):
    """A delegate step received a failure result from its worker."""

    def __init__(self, *, kind: str, message: str, worker_type: str) -> None:
        super().__init__(message)
        # Instance attribute shadows the ClassVar so the worker's failure kind is reported.
        self.kind = kind  # type: ignore[misc]
        self.worker_type = worker_type
