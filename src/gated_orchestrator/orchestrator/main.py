"""CLI entrypoint for the gated orchestrator.

Commands take an optional design document path. When it is omitted, the most
recently modified non-template document in the design-document directory is
used.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from gated_orchestrator import __version__
from gated_orchestrator.orchestrator.config import OrchestratorSettings
from gated_orchestrator.orchestrator.errors import OrchestratorError
from gated_orchestrator.orchestrator.logging import configure_logging
from gated_orchestrator.orchestrator.planning.task_files import (
    FileTaskFileStore,
    render_task_file,
)
from gated_orchestrator.orchestrator.run_store import RunStore
from gated_orchestrator.orchestrator.runner import build_workflow, run_workflow
from gated_orchestrator.orchestrator.workflow.definitions import REVIEW_WORKFLOW, TEST_WORKFLOW
from gated_orchestrator.orchestrator.workflow.gate import ProjectStage
from gated_orchestrator.orchestrator.workflow.report import Report
from gated_orchestrator.orchestrator.workflow.state_machine import WorkflowStatus
from gated_orchestrator.workers.factory import create_worker_client

logger = logging.getLogger(__name__)


def _prompt_yes_no(question: str) -> bool:
    try:
        answer = input(f"{question} (y/n) ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _always(answer: bool) -> Callable[[str], bool]:
    def confirm(question: str) -> bool:
        logger.info(
            "Fix offer answered from command line",
            extra={"question": question, "answer": answer},
        )
        return answer

    return confirm


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gated-orchestrator",
        description="Gated multi-step task orchestrator",
    )
    parser.add_argument(
        "--version", action="version", version=f"gated-task-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    review = subparsers.add_parser(
        "review",
        help="Check the implementation against a design document and offer bounded fixes",
    )
    review.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=None,
        help="Design document (defaults to the most recently modified one)",
    )
    offer = review.add_mutually_exclusive_group()
    offer.add_argument(
        "--yes", action="store_true", help="Accept the fix offer without prompting"
    )
    offer.add_argument(
        "--no-fix", action="store_true", help="Decline the fix offer and only report"
    )
    review.add_argument(
        "--stage",
        choices=[s.value for s in ProjectStage],
        default=None,
        help="Project stage (overrides PROJECT_STAGE)",
    )
    review.add_argument(
        "--target",
        dest="targets",
        action="append",
        default=None,
        help="Target file handed to fixers (repeatable; defaults to files changed since HEAD)",
    )
    review.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Fix/review cycle budget (overrides ORCHESTRATOR_MAX_ITERATIONS)",
    )

    add_tests = subparsers.add_parser(
        "add-tests",
        help="Generate test skeletons from a design document and drive them to an approved suite",
    )
    add_tests.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=None,
        help="Design document (defaults to the most recently modified one)",
    )
    add_tests.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Implement/review cycle budget (overrides ORCHESTRATOR_MAX_ITERATIONS)",
    )

    show_task = subparsers.add_parser("show-task", help="Print a task file")
    show_task.add_argument("path", type=Path, help="Task file path")

    mark_done = subparsers.add_parser("mark-task-done", help="Tick off one task in a task file")
    mark_done.add_argument("path", type=Path, help="Task file path")
    mark_done.add_argument("index", type=int, help="Zero-based task index")

    return parser


def _print_report(report: Report) -> None:
    for line in report.summary_lines():
        print(line)


def _exit_code(report: Report) -> int:
    # Only an unrecoverable failed run is a non-zero exit.
    return 1 if report.status is WorkflowStatus.FAILED else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    if getattr(args, "max_iterations", None) is not None and args.max_iterations < 1:
        print("--max-iterations must be >= 1", file=sys.stderr)
        return 2

    task_store = FileTaskFileStore(settings.tasks_root)

    try:
        if args.command in {REVIEW_WORKFLOW, TEST_WORKFLOW}:
            if args.command == REVIEW_WORKFLOW:
                if args.yes or args.no_fix:
                    confirm = _always(args.yes)
                else:
                    confirm = _prompt_yes_no
                stage = ProjectStage(args.stage) if args.stage else settings.project_stage
                targets = args.targets
            else:
                confirm = _always(False)
                stage = settings.project_stage
                targets = None

            workflow = build_workflow(
                args.command,
                settings=settings,
                design_doc=args.path,
                task_store=task_store,
                confirm=confirm,
                max_iterations=args.max_iterations,
                target_files=targets,
            )
            worker = create_worker_client(settings)
            try:
                report = run_workflow(
                    workflow,
                    worker=worker,
                    stage=stage,
                    run_store=RunStore(settings.runs_state_file),
                    design_doc=args.path,
                )
            finally:
                worker.close()

            _print_report(report)
            return _exit_code(report)

        if args.command == "show-task":
            print(render_task_file(task_store.read(args.path)), end="")
            return 0

        if args.command == "mark-task-done":
            task_file = task_store.mark_task_done(args.path, args.index)
            task = task_file.tasks[args.index]
            print(f"[x] {task.text}")
            return 0

        parser.error(f"Unknown command: {args.command}")
        return 2

    except (OrchestratorError, IndexError) as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
