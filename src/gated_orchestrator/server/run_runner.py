"""Background runner for workflow runs started over the REST API."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

from gated_orchestrator.orchestrator.run_store import RunStore
from gated_orchestrator.orchestrator.runner import run_workflow
from gated_orchestrator.orchestrator.workflow.gate import ProjectStage
from gated_orchestrator.orchestrator.workflow.state_machine import WorkflowStatus
from gated_orchestrator.orchestrator.workflow.steps import Workflow
from gated_orchestrator.workers.client import WorkerClient

logger = logging.getLogger(__name__)


def start_run(
    workflow: Workflow,
    *,
    worker: WorkerClient,
    stage: ProjectStage,
    run_store: RunStore,
    design_doc: Path | None,
    on_finished: Callable[[str], None] | None = None,
) -> threading.Thread:
    """Record the run and execute it on a daemon thread."""

    run_store.create(
        run_id=workflow.run_id,
        workflow=workflow.name,
        design_doc=str(design_doc) if design_doc is not None else None,
    )

    thread = threading.Thread(
        target=_run,
        name=f"{workflow.name}-{workflow.run_id}",
        daemon=True,
        kwargs={
            "workflow": workflow,
            "worker": worker,
            "stage": stage,
            "run_store": run_store,
            "design_doc": design_doc,
            "on_finished": on_finished,
        },
    )
    thread.start()
    return thread


def _run(
    *,
    workflow: Workflow,
    worker: WorkerClient,
    stage: ProjectStage,
    run_store: RunStore,
    design_doc: Path | None,
    on_finished: Callable[[str], None] | None,
) -> None:
    try:
        report = run_workflow(
            workflow,
            worker=worker,
            stage=stage,
            run_store=run_store,
            design_doc=design_doc,
        )
        logger.info(
            "Run finished",
            extra={"run_id": workflow.run_id, "status": report.status.value},
        )
    except Exception as e:
        logger.exception("Run crashed", extra={"run_id": workflow.run_id})
        run_store.update(workflow.run_id, status=WorkflowStatus.FAILED, error=str(e))
    finally:
        worker.close()
        if on_finished is not None:
            on_finished(workflow.run_id)
