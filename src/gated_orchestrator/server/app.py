"""FastAPI app factory.

Endpoints are thin wrappers over the runner and the stores. Runs execute on
background threads; clients poll `GET /api/v1/runs/{run_id}`.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from gated_orchestrator import __version__
from gated_orchestrator.orchestrator.config import OrchestratorSettings
from gated_orchestrator.orchestrator.design_docs import resolve_design_doc
from gated_orchestrator.orchestrator.errors import NotFoundError, ParseError
from gated_orchestrator.orchestrator.planning.task_files import FileTaskFileStore
from gated_orchestrator.orchestrator.run_store import RunRecord, RunStore
from gated_orchestrator.orchestrator.runner import build_workflow
from gated_orchestrator.orchestrator.workflow.steps import Workflow
from gated_orchestrator.server.config import ServerSettings
from gated_orchestrator.server.models import ApiRun, ApiTaskFile, ApiTaskItem, RunRequest
from gated_orchestrator.server.run_runner import start_run
from gated_orchestrator.workers.factory import create_worker_client
from gated_orchestrator.workers.transport import WorkerTransport

logger = logging.getLogger(__name__)


def _to_api_run(record: RunRecord) -> ApiRun:
    return ApiRun.model_validate(record.model_dump(mode="json"))


def _accept_all(_question: str) -> bool:
    return True


def _decline_all(_question: str) -> bool:
    return False


def create_app(
    *,
    settings: OrchestratorSettings | None = None,
    server_settings: ServerSettings | None = None,
    transport: WorkerTransport | None = None,
) -> FastAPI:
    settings = settings or OrchestratorSettings()
    server_settings = server_settings or ServerSettings()

    app = FastAPI(
        title="Gated Task Orchestrator",
        version=__version__,
        description="REST API for starting and watching gated workflow runs.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    run_store = RunStore(settings.runs_state_file)
    task_store = FileTaskFileStore(settings.tasks_root)

    # Workflows currently executing in this process, keyed by run id.
    live: dict[str, Workflow] = {}
    live_docs: dict[str, str] = {}
    live_lock = threading.Lock()

    def _finished(run_id: str) -> None:
        with live_lock:
            live.pop(run_id, None)
            live_docs.pop(run_id, None)

    app.state.live_runs = live

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/v1/runs", response_model=list[ApiRun])
    def list_runs() -> list[ApiRun]:
        return [_to_api_run(r) for r in run_store.list()]

    @app.get("/api/v1/runs/{run_id}", response_model=ApiRun)
    def get_run(run_id: str) -> ApiRun:
        record = run_store.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return _to_api_run(record)

    @app.post("/api/v1/runs", response_model=ApiRun, status_code=202)
    def create_run(req: RunRequest) -> ApiRun:
        explicit = Path(req.design_doc) if req.design_doc else None
        try:
            design_doc = resolve_design_doc(explicit, settings.design_docs_dir)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

        with live_lock:
            for active_id, active_doc in live_docs.items():
                if active_doc == str(design_doc):
                    raise HTTPException(
                        status_code=409,
                        detail=f"Run {active_id} is already active for {design_doc}",
                    )

            workflow = build_workflow(
                req.workflow,
                settings=settings,
                design_doc=design_doc,
                task_store=task_store,
                confirm=_accept_all if req.auto_confirm else _decline_all,
                max_iterations=req.max_iterations,
            )
            live[workflow.run_id] = workflow
            live_docs[workflow.run_id] = str(design_doc)

        start_run(
            workflow,
            worker=create_worker_client(settings, transport),
            stage=settings.project_stage,
            run_store=run_store,
            design_doc=design_doc,
            on_finished=_finished,
        )
        logger.info(
            "Run started",
            extra={"run_id": workflow.run_id, "workflow": workflow.name, "path": str(design_doc)},
        )

        record = run_store.get(workflow.run_id)
        if record is None:
            raise HTTPException(status_code=500, detail="Run creation failed")
        return _to_api_run(record)

    @app.post("/api/v1/runs/{run_id}/cancel", response_model=ApiRun, status_code=202)
    def cancel_run(run_id: str) -> ApiRun:
        record = run_store.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")

        with live_lock:
            workflow = live.get(run_id)
        if workflow is None:
            raise HTTPException(status_code=409, detail="Run is not active")

        # Honoured between steps; an in-flight worker call finishes first.
        workflow.request_abort()
        logger.info("Run cancellation requested", extra={"run_id": run_id})
        return _to_api_run(run_store.get(run_id) or record)

    @app.get("/api/v1/tasks", response_model=ApiTaskFile)
    def get_task_file(path: str) -> ApiTaskFile:
        try:
            task_file = task_store.read(Path(path))
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except ParseError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

        return ApiTaskFile(
            path=path,
            name=task_file.name,
            type=task_file.type,
            objective=task_file.objective,
            target_files=list(task_file.target_files),
            tasks=[ApiTaskItem(text=t.text, done=t.done) for t in task_file.tasks],
            acceptance_criteria=list(task_file.acceptance_criteria),
        )

    return app
