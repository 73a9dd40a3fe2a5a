#!/usr/bin/env python3
"""Programmatic review run example.

This demonstrates using the orchestrator components directly:

* load settings from `.env`
* build the `review` workflow for a design document
* run it against the configured worker backend
* persist the run record to `agent_state/runs.json`

Fix offers are answered by the `--accept-fixes` flag instead of a prompt.
"""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from pathlib import Path

from gated_orchestrator.orchestrator.config import OrchestratorSettings
from gated_orchestrator.orchestrator.logging import configure_logging
from gated_orchestrator.orchestrator.run_store import RunStore
from gated_orchestrator.orchestrator.runner import build_workflow, run_workflow
from gated_orchestrator.workers.factory import create_worker_client


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a design review (programmatic example).")
    parser.add_argument("design_doc", type=Path, help="Design document to review against")
    parser.add_argument(
        "--accept-fixes",
        action="store_true",
        help="Start the automated fix cycle when the compliance gate fails",
    )
    parser.add_argument(
        "--target",
        dest="targets",
        action="append",
        default=None,
        help="File the fixers may modify (repeatable)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = OrchestratorSettings()
    configure_logging(settings.log_level)

    workflow = build_workflow(
        "review",
        settings=settings,
        design_doc=args.design_doc,
        confirm=lambda _question: args.accept_fixes,
        target_files=args.targets,
    )

    worker = create_worker_client(settings)
    try:
        report = run_workflow(
            workflow,
            worker=worker,
            stage=settings.project_stage,
            run_store=RunStore(settings.runs_state_file),
            design_doc=args.design_doc,
        )
    finally:
        worker.close()

    for line in report.summary_lines():
        print(line)
    print(f"Persisted to: {settings.runs_state_file}")
    return 0 if report.succeeded else 1


if __name__ == "__main__":
    raise SystemExit(main())
