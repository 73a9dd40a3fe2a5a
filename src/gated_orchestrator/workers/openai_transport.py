"""OpenAI chat-completion worker transport."""

import json
import logging

from openai import APIError, APITimeoutError, OpenAI

from gated_orchestrator.orchestrator.errors import ProtocolError, WorkerError, WorkerTimeoutError
from gated_orchestrator.workers.payloads import decode_json_reply
from gated_orchestrator.workers.protocol import DelegationRequest, describe_schema
from gated_orchestrator.workers.transport import WorkerTransport

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are the {worker_type} worker of a gated task orchestrator. "
    "Perform exactly the unit of work described by the user message. "
    "Answer with a single JSON object of the form {schema}. "
    'If you cannot perform the work, answer {{"error": "<reason>"}}.'
)


class OpenAIWorkerTransport(WorkerTransport):
    """OpenAI API transport implementation."""

    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        temperature: float = 0.0,
        timeout_seconds: float | None = None,
        client: OpenAI | None = None,
    ) -> None:
        """Initialize the OpenAI transport.

        Args:
            api_key: OpenAI API key.
            model: Chat model name.
            temperature: Sampling temperature.
            timeout_seconds: Request timeout passed to the SDK.
            client: Pre-built client (tests).

        Raises:
            ValueError: If API key is not provided.
        """
        if client is None and not api_key:
            raise ValueError("OpenAI API key is required")

        self.model = model
        self.temperature = temperature
        self.client = client or OpenAI(api_key=api_key, timeout=timeout_seconds)

        logger.info(f"OpenAI worker transport initialized with model: {self.model}")

    def send(self, request: DelegationRequest) -> object:
        messages = [
            {
                "role": "system",
                "content": _SYSTEM_PROMPT.format(
                    worker_type=request.worker_type.value,
                    schema=describe_schema(request.worker_type),
                ),
            },
            {
                "role": "user",
                "content": request.prompt
                + "\n\nInputs:\n"
                + json.dumps(request.inputs, ensure_ascii=False, indent=2),
            },
        ]

        logger.debug(f"Sending {request.worker_type.value} request: {request.description}")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except APITimeoutError as e:
            raise WorkerTimeoutError(f"OpenAI request timed out: {e}") from e
        except APIError as e:
            raise WorkerError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise ProtocolError(
                f"{request.worker_type.value} worker (openai) returned no choices"
            )
        content = response.choices[0].message.content or ""
        logger.debug(f"Received {len(content)} characters")
        return decode_json_reply(content, source=f"{request.worker_type.value} worker (openai)")

    def close(self) -> None:
        self.client.close()
