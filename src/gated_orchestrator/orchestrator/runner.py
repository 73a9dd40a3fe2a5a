"""Wire settings, stores and workers into a single workflow run.

Shared by the CLI and the REST server so both record runs the same way.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from gated_orchestrator.orchestrator.config import OrchestratorSettings
from gated_orchestrator.orchestrator.planning.task_files import FileTaskFileStore, TaskFileStore
from gated_orchestrator.orchestrator.run_store import RunStore
from gated_orchestrator.orchestrator.workflow.definitions import (
    CTX_DESIGN_DOC,
    REVIEW_WORKFLOW,
    TEST_WORKFLOW,
    Confirm,
    WorkflowOptions,
    build_review_workflow,
    build_test_workflow,
)
from gated_orchestrator.orchestrator.workflow.engine import WorkflowEngine
from gated_orchestrator.orchestrator.workflow.gate import ProjectStage
from gated_orchestrator.orchestrator.workflow.report import Report
from gated_orchestrator.orchestrator.workflow.steps import Workflow
from gated_orchestrator.workers.client import Worker

logger = logging.getLogger(__name__)

WORKFLOW_NAMES = (REVIEW_WORKFLOW, TEST_WORKFLOW)


def _decline(_question: str) -> bool:
    return False


def build_workflow(
    name: str,
    *,
    settings: OrchestratorSettings,
    design_doc: Path | None = None,
    task_store: TaskFileStore | None = None,
    confirm: Confirm = _decline,
    max_iterations: int | None = None,
    target_files: Sequence[str] | None = None,
) -> Workflow:
    options = WorkflowOptions(
        max_iterations=max_iterations if max_iterations is not None else settings.max_iterations,
        max_files_per_invocation=settings.max_files_per_invocation,
        design_docs_dir=settings.design_docs_dir,
        repo_root=settings.repo_root,
        target_files=target_files,
    )
    store = task_store or FileTaskFileStore(settings.tasks_root)

    if name == REVIEW_WORKFLOW:
        return build_review_workflow(
            design_doc=design_doc, task_store=store, confirm=confirm, options=options
        )
    if name == TEST_WORKFLOW:
        return build_test_workflow(design_doc=design_doc, task_store=store, options=options)
    raise ValueError(f"Unknown workflow: {name!r} (expected one of {', '.join(WORKFLOW_NAMES)})")


def run_workflow(
    workflow: Workflow,
    *,
    worker: Worker,
    stage: ProjectStage,
    run_store: RunStore | None = None,
    design_doc: Path | None = None,
) -> Report:
    """Run a workflow to completion, mirroring progress into the run store."""

    if run_store is not None and run_store.get(workflow.run_id) is None:
        run_store.create(
            run_id=workflow.run_id,
            workflow=workflow.name,
            design_doc=str(design_doc) if design_doc is not None else None,
        )

    engine = WorkflowEngine(
        worker=worker,
        stage=stage,
        listener=run_store.record_progress if run_store is not None else None,
    )
    report = engine.run(workflow)

    if run_store is not None:
        updates: dict[str, object] = {
            "status": workflow.status,
            "report": report.model_dump(mode="json"),
            "error": (
                f"{workflow.failure.kind}: {workflow.failure.message}"
                if workflow.failure
                else None
            ),
        }
        # Set once the first step has resolved a default document.
        if CTX_DESIGN_DOC in workflow.context:
            updates["design_doc"] = str(workflow.context[CTX_DESIGN_DOC])
        run_store.update(workflow.run_id, **updates)
        logger.info(
            "Run recorded",
            extra={"run_id": workflow.run_id, "path": str(run_store.path)},
        )
    return report
