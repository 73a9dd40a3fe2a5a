"""Blocking, validated delivery of delegation requests.

The client is the only component that talks to workers. It applies the
invocation timeout, validates the response against the worker type's schema
and converts every failure into a typed :class:`DelegationFailure`. It never
retries: the caller owns retry policy.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import UTC, datetime
from typing import Protocol

from pydantic import ValidationError

from gated_orchestrator.orchestrator.errors import (
    ProtocolError,
    WorkerError,
    WorkerTimeoutError,
)
from gated_orchestrator.workers.protocol import (
    WORKER_OUTPUT_SCHEMAS,
    DelegationFailure,
    DelegationRequest,
    DelegationResult,
    DelegationSuccess,
    FailureKind,
    WorkerOutput,
    WorkerType,
)
from gated_orchestrator.workers.transport import WorkerTransport

logger = logging.getLogger(__name__)


class Worker(Protocol):
    """The boundary every unit of domain work crosses."""

    def invoke(self, request: DelegationRequest) -> DelegationResult: ...


def _summarize_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


class WorkerClient:
    def __init__(
        self,
        transport: WorkerTransport,
        *,
        timeout_seconds: float,
        schemas: dict[WorkerType, type[WorkerOutput]] | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._transport = transport
        self._timeout_seconds = timeout_seconds
        self._schemas = dict(schemas or WORKER_OUTPUT_SCHEMAS)

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def invoke(self, request: DelegationRequest) -> DelegationResult:
        started_at = datetime.now(tz=UTC)
        started = time.monotonic()
        try:
            raw = self._send_with_timeout(request)
            result: DelegationResult = DelegationSuccess(outputs=self._validate(request, raw))
        except WorkerTimeoutError as e:
            result = DelegationFailure(kind=FailureKind.TIMEOUT, message=str(e))
        except ProtocolError as e:
            result = DelegationFailure(kind=FailureKind.PROTOCOL_ERROR, message=str(e))
        except WorkerError as e:
            result = DelegationFailure(kind=FailureKind.WORKER_ERROR, message=str(e))
        except Exception as e:
            logger.exception(
                "Worker transport raised an unexpected error",
                extra={
                    "worker_type": request.worker_type.value,
                    "transport": self._transport.name,
                },
            )
            result = DelegationFailure(
                kind=FailureKind.WORKER_ERROR, message=f"{type(e).__name__}: {e}"
            )

        self._audit(request, result, started_at=started_at, started=started)
        return result

    def close(self) -> None:
        self._transport.close()

    def _send_with_timeout(self, request: DelegationRequest) -> object:
        # One executor per call: a timed-out call keeps its thread, never the next call's slot.
        executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"worker-{request.worker_type.value}"
        )
        try:
            future = executor.submit(self._transport.send, request)
            try:
                return future.result(timeout=self._timeout_seconds)
            except FutureTimeoutError as e:
                future.cancel()
                raise WorkerTimeoutError(
                    f"{request.worker_type.value} worker did not respond within "
                    f"{self._timeout_seconds:g}s"
                ) from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _validate(self, request: DelegationRequest, raw: object) -> dict[str, object]:
        if not isinstance(raw, dict):
            raise ProtocolError(
                f"{request.worker_type.value} worker returned {type(raw).__name__}, "
                "expected a JSON object"
            )

        error = raw.get("error")
        if isinstance(error, str) and error.strip():
            raise WorkerError(f"{request.worker_type.value} worker reported: {error.strip()}")

        schema = self._schemas.get(request.worker_type)
        if schema is None:
            raise ProtocolError(f"No output schema for worker type {request.worker_type.value!r}")

        try:
            validated = schema.model_validate(raw)
        except ValidationError as e:
            raise ProtocolError(
                f"{request.worker_type.value} response does not match schema: "
                f"{_summarize_validation_error(e)}"
            ) from e
        return validated.model_dump(by_alias=True)

    def _audit(
        self,
        request: DelegationRequest,
        result: DelegationResult,
        *,
        started_at: datetime,
        started: float,
    ) -> None:
        outcome = "Success" if isinstance(result, DelegationSuccess) else result.kind.value
        fields: dict[str, object] = {
            "worker_type": request.worker_type.value,
            "description": request.description,
            "transport": self._transport.name,
            "started_at": started_at.isoformat(),
            "finished_at": datetime.now(tz=UTC).isoformat(),
            "duration_seconds": round(time.monotonic() - started, 3),
            "outcome": outcome,
        }
        if isinstance(result, DelegationFailure):
            fields["failure_message"] = result.message
            logger.warning("Worker invocation failed", extra=fields)
        else:
            logger.info("Worker invocation succeeded", extra=fields)
