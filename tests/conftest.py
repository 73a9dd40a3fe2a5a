"""Test configuration and fixtures."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterator
from datetime import date
from pathlib import Path

import pytest

from gated_orchestrator.orchestrator.planning.task_files import InMemoryTaskFileStore
from gated_orchestrator.orchestrator.workflow.definitions import WorkflowOptions
from gated_orchestrator.workers.client import WorkerClient
from gated_orchestrator.workers.protocol import DelegationRequest, WorkerType
from gated_orchestrator.workers.transport import WorkerTransport

Reply = dict[str, object] | Exception | Callable[[DelegationRequest], object]


class ScriptedTransport(WorkerTransport):
    """Answers each worker type from its own queue of canned replies.

    The last reply of a queue is repeated once the queue runs dry. A reply may
    be an exception (raised) or a callable (called with the request).
    """

    name = "scripted"

    def __init__(self, replies: dict[WorkerType, list[Reply]] | None = None) -> None:
        self.replies: dict[WorkerType, list[Reply]] = defaultdict(list)
        for worker_type, queue in (replies or {}).items():
            self.replies[worker_type] = list(queue)
        self.requests: list[DelegationRequest] = []
        self.closed = False

    def script(self, worker_type: WorkerType, *replies: Reply) -> ScriptedTransport:
        self.replies[worker_type].extend(replies)
        return self

    def calls(self, worker_type: WorkerType) -> list[DelegationRequest]:
        return [r for r in self.requests if r.worker_type is worker_type]

    def send(self, request: DelegationRequest) -> object:
        self.requests.append(request)
        queue = self.replies.get(request.worker_type)
        if not queue:
            raise AssertionError(f"No scripted reply for {request.worker_type.value}")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        return reply

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def worker(transport: ScriptedTransport) -> WorkerClient:
    return WorkerClient(transport, timeout_seconds=5.0)


@pytest.fixture
def task_store() -> InMemoryTaskFileStore:
    return InMemoryTaskFileStore(Path("tasks"), today=lambda: date(2024, 5, 17))


@pytest.fixture
def design_doc(tmp_path: Path) -> Path:
    doc = tmp_path / "docs" / "design" / "feature.md"
    doc.parent.mkdir(parents=True)
    doc.write_text("# Feature\n\n- [ ] Validates input\n", encoding="utf-8")
    return doc


@pytest.fixture
def options(tmp_path: Path) -> WorkflowOptions:
    return WorkflowOptions(
        max_iterations=3,
        max_files_per_invocation=2,
        design_docs_dir=tmp_path / "docs" / "design",
        repo_root=tmp_path,
        target_files=["src/app.py", "src/api.py", "src/models.py"],
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point settings at tmp_path and clear env vars that would leak in."""

    for name in (
        "PROJECT_STAGE",
        "LOG_LEVEL",
        "ORCHESTRATOR_WORKER_BACKEND",
        "ORCHESTRATOR_MAX_ITERATIONS",
        "ORCHESTRATOR_MAX_FILES_PER_INVOCATION",
        "ORCHESTRATOR_WORKER_URL",
        "ORCHESTRATOR_WORKER_TOKEN",
        "ORCHESTRATOR_WORKER_TIMEOUT_SECONDS",
        "ORCHESTRATOR_WORKER_COMMAND",
        "ORCHESTRATOR_REPO_ROOT",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ORCHESTRATOR_DESIGN_DOCS_DIR", str(tmp_path / "docs" / "design"))
    monkeypatch.setenv("ORCHESTRATOR_TASKS_ROOT", str(tmp_path / "tasks"))
    monkeypatch.setenv("AGENT_STATE_PATH", str(tmp_path / "agent_state"))
    return tmp_path


@pytest.fixture
def make_transport() -> type[ScriptedTransport]:
    return ScriptedTransport


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """The CLI reconfigures the root logger; undo that after each test."""

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
