"""Persisted run records.

Each workflow run (CLI or server) gets one record in `agent_state/runs.json`:
its step statuses while it executes and its report once it finishes.

The file is rewritten on every step transition and guarded by an in-process
lock only: two processes (say the CLI and the server) writing the same file
can lose each other's updates. Finished runs beyond `max_records` are pruned,
oldest first, when a new run is created.

This is intentionally minimal. If/when we need reliability and scale, this
should move to a real queue or a DB.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from gated_orchestrator.orchestrator.workflow.state_machine import (
    TERMINAL_WORKFLOW_STATES,
    WorkflowStatus,
)
from gated_orchestrator.orchestrator.workflow.steps import Workflow

logger = logging.getLogger(__name__)


class RunRecord(BaseModel):
    run_id: str
    workflow: str
    status: WorkflowStatus
    created_at: str
    updated_at: str

    design_doc: str | None = None
    steps: list[dict[str, object]] = Field(default_factory=list)
    iterations: dict[str, int] = Field(default_factory=dict)
    report: dict[str, object] | None = None
    error: str | None = None

    @property
    def active(self) -> bool:
        return self.status not in TERMINAL_WORKFLOW_STATES


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class RunStore:
    path: Path
    max_records: int = 200

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[RunRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Run state file is not valid JSON; treating as empty",
                extra={"path": str(self.path)},
            )
            return []
        if not isinstance(raw, list):
            return []
        return [RunRecord.model_validate(item) for item in raw]

    def _save_unlocked(self, runs: list[RunRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in runs]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def list(self) -> list[RunRecord]:
        with self._lock:
            return self._load_unlocked()

    def get(self, run_id: str) -> RunRecord | None:
        with self._lock:
            for run in self._load_unlocked():
                if run.run_id == run_id:
                    return run
            return None

    def create(self, *, run_id: str, workflow: str, design_doc: str | None) -> RunRecord:
        with self._lock:
            runs = self._load_unlocked()
            now = _utc_iso_now()
            record = RunRecord(
                run_id=run_id,
                workflow=workflow,
                status=WorkflowStatus.PENDING,
                created_at=now,
                updated_at=now,
                design_doc=design_doc,
            )
            runs.append(record)
            self._save_unlocked(self._prune(runs))
            return record

    def _prune(self, runs: list[RunRecord]) -> list[RunRecord]:
        excess = len(runs) - self.max_records
        if excess <= 0:
            return runs
        # Records are kept in creation order; active runs are never dropped.
        finished = [r.run_id for r in runs if not r.active][:excess]
        if finished:
            logger.info(
                "Pruning finished run records",
                extra={"path": str(self.path), "count": len(finished)},
            )
        dropped = set(finished)
        return [r for r in runs if r.run_id not in dropped]

    def update(self, run_id: str, **updates: object) -> RunRecord:
        with self._lock:
            runs = self._load_unlocked()
            for idx, run in enumerate(runs):
                if run.run_id != run_id:
                    continue
                merged = run.model_copy(update={"updated_at": _utc_iso_now(), **updates})
                runs[idx] = merged
                self._save_unlocked(runs)
                return merged
            raise KeyError(run_id)

    def record_progress(self, workflow: Workflow) -> RunRecord:
        """Engine listener: mirror the workflow's step statuses."""

        return self.update(
            workflow.run_id,
            status=workflow.status,
            steps=[s.to_json() for s in workflow.steps],
            iterations=dict(workflow.iterations),
        )
