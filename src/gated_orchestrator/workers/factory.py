"""Factory for creating worker transports and clients."""

import logging

from gated_orchestrator.orchestrator.config import OrchestratorSettings
from gated_orchestrator.workers.client import WorkerClient
from gated_orchestrator.workers.command_transport import CommandWorkerTransport
from gated_orchestrator.workers.http_transport import HttpWorkerTransport
from gated_orchestrator.workers.openai_transport import OpenAIWorkerTransport
from gated_orchestrator.workers.transport import WorkerTransport

logger = logging.getLogger(__name__)


class WorkerTransportFactory:
    """Factory for creating worker transport instances."""

    @staticmethod
    def create(settings: OrchestratorSettings) -> WorkerTransport:
        """Create a worker transport based on configuration.

        Args:
            settings: Orchestrator settings selecting the backend.

        Returns:
            Configured worker transport instance.

        Raises:
            ValueError: If the backend is not supported.
        """
        logger.info(f"Creating worker transport: {settings.worker_backend}")

        if settings.worker_backend == "command":
            return CommandWorkerTransport(
                settings.worker_command,
                working_directory=settings.repo_root,
                timeout_seconds=settings.worker_timeout_seconds,
            )
        elif settings.worker_backend == "openai":
            return OpenAIWorkerTransport(
                api_key=settings.openai_api_key,
                model=settings.llm_model,
                temperature=settings.llm_temperature,
                timeout_seconds=settings.worker_timeout_seconds,
            )
        elif settings.worker_backend == "http":
            return HttpWorkerTransport(
                settings.worker_url,
                token=settings.worker_token,
                timeout_seconds=settings.worker_timeout_seconds,
            )
        else:
            raise ValueError(f"Unsupported worker backend: {settings.worker_backend}")


def create_worker_client(
    settings: OrchestratorSettings, transport: WorkerTransport | None = None
) -> WorkerClient:
    return WorkerClient(
        transport or WorkerTransportFactory.create(settings),
        timeout_seconds=settings.worker_timeout_seconds,
    )
