"""HTTP worker transport.

Workers are exposed by a service as `POST {base_url}/workers/{worker_type}`
taking the request payload and answering with the worker's JSON schema.
"""

from __future__ import annotations

import logging

import requests

from gated_orchestrator.orchestrator.errors import ProtocolError, WorkerError, WorkerTimeoutError
from gated_orchestrator.workers.protocol import DelegationRequest
from gated_orchestrator.workers.transport import WorkerTransport

logger = logging.getLogger(__name__)


class HttpWorkerTransport(WorkerTransport):
    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("Worker base URL is required")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if token:
            self._session.headers.update({"Authorization": f"Bearer {token}"})

    def send(self, request: DelegationRequest) -> object:
        url = f"{self.base_url}/workers/{request.worker_type.value}"
        try:
            resp = self._session.post(url, json=request.to_payload(), timeout=self.timeout_seconds)
        except requests.Timeout as e:
            raise WorkerTimeoutError(f"Worker service timed out: {url}") from e
        except requests.RequestException as e:
            raise WorkerError(f"Worker service unreachable: {url} ({e})") from e

        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise WorkerError(
                f"Worker service returned HTTP {resp.status_code}: {resp.text[:500]}"
            ) from e

        try:
            return resp.json()
        except ValueError as e:
            raise ProtocolError(f"Worker service returned non-JSON body from {url}") from e

    def close(self) -> None:
        self._session.close()
