"""Agent CLI worker transport.

Runs one process per request. The request payload is written to stdin as JSON
and the process is expected to print a single JSON document on stdout.
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
from pathlib import Path

from gated_orchestrator.orchestrator.errors import ProtocolError, WorkerError, WorkerTimeoutError
from gated_orchestrator.workers.payloads import decode_json_reply, unwrap_result_envelope
from gated_orchestrator.workers.protocol import DelegationRequest, describe_schema
from gated_orchestrator.workers.transport import WorkerTransport

logger = logging.getLogger(__name__)


def render_stdin(request: DelegationRequest) -> str:
    """Render the text an agent CLI receives on stdin."""

    return "\n\n".join(
        [
            request.prompt.rstrip(),
            "Request JSON:\n" + json.dumps(request.to_payload(), ensure_ascii=False, indent=2),
            "Respond with a single JSON object and nothing else: "
            + describe_schema(request.worker_type),
        ]
    )


class CommandWorkerTransport(WorkerTransport):
    name = "command"

    def __init__(
        self,
        command: str | list[str],
        *,
        working_directory: Path | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise ValueError("Worker command must not be empty")
        self.argv = argv
        self.working_directory = working_directory
        self.timeout_seconds = timeout_seconds

    def send(self, request: DelegationRequest) -> object:
        logger.debug(
            "Starting worker process",
            extra={"argv": self.argv, "worker_type": request.worker_type.value},
        )
        try:
            completed = subprocess.run(
                self.argv,
                input=render_stdin(request).encode("utf-8"),
                capture_output=True,
                cwd=self.working_directory,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as e:
            raise WorkerError(f"Worker command not found: {self.argv[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise WorkerTimeoutError(
                f"Worker command exceeded {self.timeout_seconds:g}s: {self.argv[0]}"
            ) from e
        except OSError as e:
            raise WorkerError(f"Worker command could not be started: {self.argv[0]}: {e}") from e

        if completed.returncode != 0:
            stderr = (completed.stderr or b"").decode("utf-8", errors="replace").strip()
            raise WorkerError(
                f"Worker command failed with exit code {completed.returncode}: {stderr[:500]}"
            )

        source = f"{request.worker_type.value} worker ({self.argv[0]})"
        try:
            stdout = completed.stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"{source}: reply is not valid UTF-8: {e}") from e
        payload = decode_json_reply(stdout, source=source)
        return unwrap_result_envelope(payload, source=source)
