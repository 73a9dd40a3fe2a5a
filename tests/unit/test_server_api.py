from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from gated_orchestrator.orchestrator.config import OrchestratorSettings
from gated_orchestrator.orchestrator.planning.task_files import FileTaskFileStore, TaskFile, TaskItem
from gated_orchestrator.server import create_app
from gated_orchestrator.server.config import ServerSettings
from gated_orchestrator.workers.protocol import DelegationRequest, WorkerType

if TYPE_CHECKING:
    from tests.conftest import ScriptedTransport

PASSING_REVIEW = {"complianceRate": 85.0, "unfulfilledItems": []}


@pytest.fixture
def settings(clean_env: Path) -> OrchestratorSettings:
    doc = clean_env / "docs" / "design" / "feature.md"
    doc.parent.mkdir(parents=True)
    doc.write_text("# Feature\n", encoding="utf-8")
    return OrchestratorSettings(_env_file=None)


@pytest.fixture
def app(settings: OrchestratorSettings, transport: ScriptedTransport) -> FastAPI:
    return create_app(
        settings=settings,
        server_settings=ServerSettings(_env_file=None),
        transport=transport,
    )


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def _wait(client: TestClient, app: FastAPI, run_id: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while run_id in app.state.live_runs:
        if time.monotonic() > deadline:
            raise AssertionError(f"Run {run_id} did not finish")
        time.sleep(0.02)
    return client.get(f"/api/v1/runs/{run_id}").json()


def _blocking(release: threading.Event, entered: threading.Event, reply: dict):
    def answer(_req: DelegationRequest) -> dict:
        entered.set()
        release.wait(10)
        return reply

    return answer


def test_health(client: TestClient) -> None:
    assert client.get("/api/v1/health").json() == {"status": "ok"}


def test_run_lifecycle(
    client: TestClient, app: FastAPI, transport: ScriptedTransport, settings: OrchestratorSettings
) -> None:
    transport.script(WorkerType.REVIEWER, PASSING_REVIEW)

    resp = client.post("/api/v1/runs", json={"workflow": "review"})

    assert resp.status_code == 202
    created = resp.json()
    assert created["workflow"] == "review"
    assert created["design_doc"] == str(settings.design_docs_dir / "feature.md")

    run = _wait(client, app, created["run_id"])
    assert run["status"] == "completed"
    assert run["report"]["initial_metric"] == 85.0
    assert {s["name"]: s["status"] for s in run["steps"]}["apply_fixes"] == "skipped"

    listed = client.get("/api/v1/runs").json()
    assert [r["run_id"] for r in listed] == [created["run_id"]]


def test_failed_run_is_reported(
    client: TestClient, app: FastAPI, transport: ScriptedTransport
) -> None:
    transport.script(WorkerType.SKELETON_GENERATOR, {"error": "no design criteria"})

    created = client.post("/api/v1/runs", json={"workflow": "add-tests"}).json()
    run = _wait(client, app, created["run_id"])

    assert run["status"] == "failed"
    assert run["report"]["failure_kind"] == "WorkerError"
    assert "no design criteria" in run["error"]


def test_unknown_design_doc_is_404(client: TestClient) -> None:
    resp = client.post("/api/v1/runs", json={"workflow": "review", "design_doc": "nope.md"})
    assert resp.status_code == 404


@pytest.mark.parametrize(
    "body",
    [
        {"workflow": "deploy"},
        {"workflow": "review", "max_iterations": 0},
        {},
    ],
)
def test_invalid_run_request_is_422(client: TestClient, body: dict) -> None:
    assert client.post("/api/v1/runs", json=body).status_code == 422


def test_second_run_on_same_document_conflicts(
    client: TestClient, app: FastAPI, transport: ScriptedTransport
) -> None:
    release, entered = threading.Event(), threading.Event()
    transport.script(WorkerType.REVIEWER, _blocking(release, entered, PASSING_REVIEW))

    first = client.post("/api/v1/runs", json={"workflow": "review"}).json()
    try:
        assert entered.wait(5)
        second = client.post("/api/v1/runs", json={"workflow": "add-tests"})
        assert second.status_code == 409
    finally:
        release.set()

    assert _wait(client, app, first["run_id"])["status"] == "completed"


def test_cancel_stops_run_at_next_step(
    client: TestClient, app: FastAPI, transport: ScriptedTransport
) -> None:
    release, entered = threading.Event(), threading.Event()
    transport.script(WorkerType.REVIEWER, _blocking(release, entered, PASSING_REVIEW))

    run_id = client.post("/api/v1/runs", json={"workflow": "review"}).json()["run_id"]
    try:
        assert entered.wait(5)
        assert client.post(f"/api/v1/runs/{run_id}/cancel").status_code == 202
    finally:
        release.set()

    run = _wait(client, app, run_id)
    assert run["status"] == "aborted"
    steps = {s["name"]: s["status"] for s in run["steps"]}
    assert steps["review_compliance"] == "done"
    assert steps["compliance_gate"] == "pending"

    assert client.post(f"/api/v1/runs/{run_id}/cancel").status_code == 409


def test_unknown_run_is_404(client: TestClient) -> None:
    assert client.get("/api/v1/runs/nope").status_code == 404
    assert client.post("/api/v1/runs/nope/cancel").status_code == 404


def test_task_file_endpoint(client: TestClient, settings: OrchestratorSettings) -> None:
    store = FileTaskFileStore(settings.tasks_root)
    path = store.create(
        "review",
        TaskFile(name="Fix gaps", type="review-fix", tasks=[TaskItem(text="Add retries")]),
    )

    resp = client.get("/api/v1/tasks", params={"path": str(path)})

    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "Fix gaps"
    assert body["tasks"] == [{"text": "Add retries", "done": False}]

    assert client.get("/api/v1/tasks", params={"path": "missing.md"}).status_code == 404

    path.write_text("garbage\n", encoding="utf-8")
    assert client.get("/api/v1/tasks", params={"path": str(path)}).status_code == 422
