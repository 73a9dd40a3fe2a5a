"""Abstract base class for worker transports."""

from abc import ABC, abstractmethod
from typing import Any

from gated_orchestrator.workers.protocol import DelegationRequest


class WorkerTransport(ABC):
    """Abstract base class for worker transports.

    This interface allows pluggable worker backends (agent CLI, OpenAI, HTTP).
    Transports only move bytes: schema validation and timeouts belong to
    :class:`gated_orchestrator.workers.client.WorkerClient`.
    """

    name: str = "transport"

    @abstractmethod
    def send(self, request: DelegationRequest) -> Any:
        """Deliver a request and return the decoded JSON response.

        Args:
            request: The delegation request.

        Returns:
            The decoded response payload (expected to be a JSON object).

        Raises:
            WorkerError: If the worker reports an internal failure.
            WorkerTimeoutError: If the transport's own deadline expires.
            ProtocolError: If the response cannot be decoded.
        """
        pass

    def close(self) -> None:
        """Release transport resources."""
