"""Concrete workflows.

review
    Check an implementation against a design document. If the compliance gate
    fails and the user agrees, run a bounded fix -> quality check -> re-review
    cycle until the gate passes.

add-tests
    Generate test skeletons from a design document, then run a bounded
    implement -> quality check -> test review cycle until the reviewer approves.

Every unit of domain work is a delegate step. The handlers below only move
data between the context bag, task files and worker requests.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from gated_orchestrator.orchestrator.design_docs import list_changed_files, resolve_design_doc
from gated_orchestrator.orchestrator.errors import ProtocolError
from gated_orchestrator.orchestrator.planning.task_files import TaskFile, TaskFileStore, TaskItem
from gated_orchestrator.orchestrator.workflow.gate import GateVerdict
from gated_orchestrator.orchestrator.workflow.report import (
    CTX_FAILED_ITEMS,
    CTX_FINAL_METRIC,
    CTX_GATE_VERDICT,
    CTX_INITIAL_METRIC,
    CTX_MANUAL_ITEMS,
    CTX_TASK_FILE,
    CTX_UNRESOLVED_ITEMS,
)
from gated_orchestrator.orchestrator.workflow.steps import ContextBag, StepRegistry, Workflow
from gated_orchestrator.workers.protocol import DelegationRequest, WorkerType

logger = logging.getLogger(__name__)

REVIEW_WORKFLOW = "review"
TEST_WORKFLOW = "add-tests"

CTX_DESIGN_DOC = "design_doc"
CTX_TARGET_FILES = "target_files"
CTX_COMPLIANCE_RATE = "compliance_rate"
CTX_FILES_MODIFIED = "files_modified"
CTX_QUALITY_APPROVED = "quality_approved"
CTX_GENERATED_FILES = "generated_files"
CTX_TEST_REVIEW_STATUS = "test_review_status"

Confirm = Callable[[str], bool]

REVIEW_PROMPT = """\
Review the implementation against the design document at {design_doc}.
Evaluate every acceptance criterion and report the percentage that is fulfilled
as complianceRate. List each unfulfilled criterion in unfulfilledItems. List
items that need business-logic or architecture decisions in criticalItems."""

FIX_PROMPT = """\
Execute the task file at {task_file} for the design document at {design_doc}.
Only modify the listed target files (at most {max_files}). Report success,
partial or failed as status and every file you changed in filesModified."""

QUALITY_PROMPT = """\
Run the project's quality checks (formatting, linting, type checks, tests) on
the files changed for {task_file}. Fix trivial problems. Report approved=true
only if every check passes."""

SKELETON_PROMPT = """\
Generate test skeletons for the acceptance criteria in the design document at
{design_doc}. Report every created file in generatedFiles."""

IMPLEMENT_TESTS_PROMPT = """\
Implement the test cases described by the task file at {task_file}. Only touch
the listed target files (at most {max_files}). Report status and filesModified."""

TEST_REVIEW_PROMPT = """\
Review the implemented tests for {task_file} against the design document at
{design_doc}. Report approved or needs_revision as status and list each
required change in requiredFixes."""


@dataclass(frozen=True, slots=True)
class WorkflowOptions:
    max_iterations: int
    max_files_per_invocation: int = 5
    design_docs_dir: Path = Path("docs/design")
    repo_root: Path = Path(".")
    target_files: Sequence[str] | None = None


def batched(items: Sequence[str], size: int) -> list[list[str]]:
    """Split items into consecutive batches of at most `size`."""

    if size < 1:
        raise ValueError("Batch size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _one_line(text: object) -> str:
    return " ".join(str(text).split())


@dataclass(slots=True)
class _Handlers:
    """Step handlers shared by both workflows."""

    task_store: TaskFileStore
    options: WorkflowOptions
    design_doc: Path | None
    confirm: Confirm = field(default=lambda _question: False)

    # -- context -------------------------------------------------------------

    def resolve(self, ctx: ContextBag) -> dict[str, object]:
        doc = resolve_design_doc(self.design_doc, self.options.design_docs_dir)
        if self.options.target_files is not None:
            files = [_one_line(f) for f in self.options.target_files if _one_line(f)]
        else:
            files = list_changed_files(self.options.repo_root)
        return {CTX_DESIGN_DOC: str(doc), CTX_TARGET_FILES: files}

    def _task_path(self, ctx: ContextBag) -> Path:
        return Path(str(ctx[CTX_TASK_FILE]))

    # -- review ----------------------------------------------------------------

    def review_request(self, ctx: ContextBag) -> DelegationRequest:
        return DelegationRequest(
            worker_type=WorkerType.REVIEWER,
            description="Review implementation against design doc",
            prompt=REVIEW_PROMPT.format(design_doc=ctx[CTX_DESIGN_DOC]),
            inputs={
                "designDoc": ctx[CTX_DESIGN_DOC],
                "targetFiles": ctx.get(CTX_TARGET_FILES, []),
            },
        )

    def record_review(self, ctx: ContextBag, outputs: list[dict[str, object]]) -> dict[str, object]:
        out = outputs[-1]
        rate = float(out["complianceRate"])  # type: ignore[arg-type]
        critical = [_one_line(i) for i in out.get("criticalItems", [])]  # type: ignore[union-attr]
        unfulfilled = [_one_line(i) for i in out["unfulfilledItems"]]  # type: ignore[union-attr]

        updates: dict[str, object] = {
            CTX_COMPLIANCE_RATE: rate,
            CTX_UNRESOLVED_ITEMS: unfulfilled,
            CTX_MANUAL_ITEMS: critical,
        }
        if CTX_INITIAL_METRIC not in ctx:
            updates[CTX_INITIAL_METRIC] = rate
        else:
            updates[CTX_FINAL_METRIC] = rate

        if CTX_TASK_FILE in ctx:
            open_items = [i for i in unfulfilled if i not in critical]
            self._sync_tasks(self._task_path(ctx), open_items=open_items)
        return updates

    def _sync_tasks(self, path: Path, *, open_items: list[str]) -> None:
        """Tick off resolved tasks and append newly reported ones."""

        task_file = self.task_store.append_tasks(path, open_items)
        still_open = set(open_items)
        for idx, task in enumerate(task_file.tasks):
            if task.text not in still_open:
                self.task_store.mark_task_done(path, idx)

    def confirm_fixes(self, ctx: ContextBag) -> bool:
        verdict = ctx.get(CTX_GATE_VERDICT)
        if isinstance(verdict, GateVerdict) and not verdict.requires_user_confirmation:
            return True
        items = ctx.get(CTX_UNRESOLVED_ITEMS) or []
        threshold = verdict.threshold_used if isinstance(verdict, GateVerdict) else None
        question = (
            f"Compliance {ctx.get(CTX_COMPLIANCE_RATE)}% is below the "
            f"{threshold if threshold is not None else 'required'}% threshold "
            f"({len(items)} unfulfilled item(s)). Run automated fixes?"  # type: ignore[arg-type]
        )
        return self.confirm(question)

    def create_fix_task(self, ctx: ContextBag) -> dict[str, object]:
        doc = Path(str(ctx[CTX_DESIGN_DOC]))
        manual = set(ctx.get(CTX_MANUAL_ITEMS) or [])  # type: ignore[arg-type]
        unresolved = ctx.get(CTX_UNRESOLVED_ITEMS) or []
        items = [i for i in unresolved if i not in manual]  # type: ignore[attr-defined]
        verdict = ctx.get(CTX_GATE_VERDICT)
        threshold = verdict.threshold_used if isinstance(verdict, GateVerdict) else None

        criteria = ["Quality checks approve the changes", "No critical items remain"]
        if threshold is not None:
            criteria.insert(0, f"Compliance rate is at least {threshold:g}%")

        path = self.task_store.create(
            "review",
            TaskFile(
                name=f"Resolve design compliance gaps: {doc.name}",
                type="review-fix",
                objective=(
                    f"Bring the implementation in line with {doc}. "
                    "Each task is an acceptance criterion reported as unfulfilled."
                ),
                target_files=list(ctx.get(CTX_TARGET_FILES) or []),  # type: ignore[call-overload]
                tasks=[TaskItem(text=i) for i in dict.fromkeys(items)],
                acceptance_criteria=criteria,
            ),
        )
        return {CTX_TASK_FILE: str(path)}

    # -- fixing ----------------------------------------------------------------

    def fix_requests(
        self, ctx: ContextBag, *, worker_type: WorkerType, prompt: str, label: str
    ) -> list[DelegationRequest]:
        path = self._task_path(ctx)
        task_file = self.task_store.read(path)
        cap = self.options.max_files_per_invocation
        batches = batched(task_file.target_files, cap) or [[]]
        return [
            DelegationRequest(
                worker_type=worker_type,
                description=f"{label} ({n}/{len(batches)})",
                prompt=prompt.format(
                    task_file=path, design_doc=ctx[CTX_DESIGN_DOC], max_files=cap
                ),
                inputs={
                    "taskFile": str(path),
                    "designDoc": ctx[CTX_DESIGN_DOC],
                    "targetFiles": batch,
                    "pendingTasks": task_file.pending_tasks,
                    "maxFiles": cap,
                },
            )
            for n, batch in enumerate(batches, start=1)
        ]

    def record_fixes(self, ctx: ContextBag, outputs: list[dict[str, object]]) -> dict[str, object]:
        cap = self.options.max_files_per_invocation
        modified: list[str] = []
        failed: list[str] = []
        for n, out in enumerate(outputs, start=1):
            files = [str(f) for f in out["filesModified"]]  # type: ignore[union-attr]
            if len(files) > cap:
                raise ProtocolError(
                    f"Fixer invocation {n} modified {len(files)} files; the cap is {cap}"
                )
            modified += [f for f in files if f not in modified]
            if out["status"] != "success":
                failed.append(f"Automated fix {out['status']} (invocation {n}/{len(outputs)})")

        if modified:
            self.task_store.append_target_files(self._task_path(ctx), modified)
        return {CTX_FILES_MODIFIED: modified, CTX_FAILED_ITEMS: failed}

    def quality_request(self, ctx: ContextBag) -> DelegationRequest:
        return DelegationRequest(
            worker_type=WorkerType.QUALITY_CHECKER,
            description="Quality check changed files",
            prompt=QUALITY_PROMPT.format(task_file=ctx[CTX_TASK_FILE]),
            inputs={
                "taskFile": ctx[CTX_TASK_FILE],
                "filesModified": ctx.get(CTX_FILES_MODIFIED, []),
            },
        )

    def record_quality(
        self, ctx: ContextBag, outputs: list[dict[str, object]]
    ) -> dict[str, object]:
        approved = all(bool(out["approved"]) for out in outputs)
        updates: dict[str, object] = {CTX_QUALITY_APPROVED: approved}
        if not approved:
            failed = list(ctx.get(CTX_FAILED_ITEMS) or [])  # type: ignore[call-overload]
            failed.append("Quality check did not approve the changes")
            updates[CTX_FAILED_ITEMS] = failed
        return updates

    # -- tests -----------------------------------------------------------------

    def skeleton_request(self, ctx: ContextBag) -> DelegationRequest:
        return DelegationRequest(
            worker_type=WorkerType.SKELETON_GENERATOR,
            description="Generate test skeletons",
            prompt=SKELETON_PROMPT.format(design_doc=ctx[CTX_DESIGN_DOC]),
            inputs={"designDoc": ctx[CTX_DESIGN_DOC]},
        )

    def record_skeletons(
        self, ctx: ContextBag, outputs: list[dict[str, object]]
    ) -> dict[str, object]:
        files = outputs[-1]["generatedFiles"]
        generated = [_one_line(f) for f in files]  # type: ignore[union-attr]
        return {CTX_GENERATED_FILES: [f for f in generated if f]}

    def create_test_task(self, ctx: ContextBag) -> dict[str, object]:
        doc = Path(str(ctx[CTX_DESIGN_DOC]))
        generated = list(ctx.get(CTX_GENERATED_FILES) or [])  # type: ignore[call-overload]
        path = self.task_store.create(
            "test",
            TaskFile(
                name=f"Implement tests: {doc.name}",
                type="test-implementation",
                objective=f"Implement the generated test skeletons for {doc}.",
                target_files=generated,
                tasks=[TaskItem(text=f"Implement test cases in {f}") for f in generated],
                acceptance_criteria=[
                    "Every generated skeleton is implemented",
                    "Quality checks approve the tests",
                    "Test review approves the suite",
                ],
            ),
        )
        return {CTX_TASK_FILE: str(path)}

    def test_review_request(self, ctx: ContextBag) -> DelegationRequest:
        return DelegationRequest(
            worker_type=WorkerType.TEST_REVIEWER,
            description="Review implemented tests",
            prompt=TEST_REVIEW_PROMPT.format(
                task_file=ctx[CTX_TASK_FILE], design_doc=ctx[CTX_DESIGN_DOC]
            ),
            inputs={
                "taskFile": ctx[CTX_TASK_FILE],
                "designDoc": ctx[CTX_DESIGN_DOC],
                "filesModified": ctx.get(CTX_FILES_MODIFIED, []),
            },
        )

    def record_test_review(
        self, ctx: ContextBag, outputs: list[dict[str, object]]
    ) -> dict[str, object]:
        out = outputs[-1]
        status = str(out["status"])
        fixes = [_one_line(f) for f in out["requiredFixes"]]  # type: ignore[union-attr]
        path = self._task_path(ctx)
        if status == "approved":
            task_file = self.task_store.read(path)
            for idx in range(len(task_file.tasks)):
                self.task_store.mark_task_done(path, idx)
        elif fixes:
            self.task_store.append_tasks(path, fixes)
        return {CTX_TEST_REVIEW_STATUS: status, CTX_UNRESOLVED_ITEMS: fixes}


def build_review_workflow(
    *,
    design_doc: Path | None,
    task_store: TaskFileStore,
    confirm: Confirm,
    options: WorkflowOptions,
) -> Workflow:
    h = _Handlers(task_store=task_store, options=options, design_doc=design_doc, confirm=confirm)
    r = StepRegistry()

    r.action("resolve_design_doc", h.resolve)
    r.delegate(
        "review_compliance",
        h.review_request,
        h.record_review,
        depends_on=["resolve_design_doc"],
    )
    r.gate("compliance_gate", metric_key=CTX_COMPLIANCE_RATE, critical_key=CTX_MANUAL_ITEMS)
    r.branch("confirm_fixes", h.confirm_fixes, on_false="report")
    r.action("create_fix_task", h.create_fix_task, depends_on=["review_compliance"])
    r.delegate(
        "apply_fixes",
        lambda ctx: h.fix_requests(
            ctx, worker_type=WorkerType.FIXER, prompt=FIX_PROMPT, label="Apply fixes"
        ),
        h.record_fixes,
        depends_on=["create_fix_task"],
    )
    r.delegate("quality_check", h.quality_request, h.record_quality, depends_on=["apply_fixes"])
    r.branch(
        "quality_gate",
        lambda ctx: bool(ctx.get(CTX_QUALITY_APPROVED)),
        on_false="apply_fixes",
    )
    r.delegate("re_review", h.review_request, h.record_review, depends_on=["quality_check"])
    r.gate(
        "recheck_gate",
        metric_key=CTX_COMPLIANCE_RATE,
        critical_key=CTX_MANUAL_ITEMS,
        on_true="report",
        on_false="apply_fixes",
    )
    r.terminal("report")
    r.loop(
        "fix_cycle",
        first="apply_fixes",
        last="recheck_gate",
        max_iterations=options.max_iterations,
    )
    return Workflow(name=REVIEW_WORKFLOW, registry=r)


def build_test_workflow(
    *,
    design_doc: Path | None,
    task_store: TaskFileStore,
    options: WorkflowOptions,
) -> Workflow:
    h = _Handlers(task_store=task_store, options=options, design_doc=design_doc)
    r = StepRegistry()

    r.action("resolve_design_doc", h.resolve)
    r.delegate(
        "generate_skeletons",
        h.skeleton_request,
        h.record_skeletons,
        depends_on=["resolve_design_doc"],
    )
    r.action("create_test_task", h.create_test_task, depends_on=["generate_skeletons"])
    r.delegate(
        "implement_tests",
        lambda ctx: h.fix_requests(
            ctx,
            worker_type=WorkerType.EXECUTOR,
            prompt=IMPLEMENT_TESTS_PROMPT,
            label="Implement tests",
        ),
        h.record_fixes,
        depends_on=["create_test_task"],
    )
    r.delegate(
        "quality_check", h.quality_request, h.record_quality, depends_on=["implement_tests"]
    )
    r.branch(
        "quality_gate",
        lambda ctx: bool(ctx.get(CTX_QUALITY_APPROVED)),
        on_false="implement_tests",
    )
    r.delegate(
        "review_tests", h.test_review_request, h.record_test_review, depends_on=["quality_check"]
    )
    r.branch(
        "review_verdict",
        lambda ctx: ctx.get(CTX_TEST_REVIEW_STATUS) == "approved",
        on_true="report",
        on_false="implement_tests",
    )
    r.terminal("report")
    r.loop(
        "revision_cycle",
        first="implement_tests",
        last="review_verdict",
        max_iterations=options.max_iterations,
    )
    return Workflow(name=TEST_WORKFLOW, registry=r)
