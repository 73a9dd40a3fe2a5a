"""Task files: durable hand-off documents between the orchestrator and workers.

A task file is a small Markdown document describing one delegated job:

    # <name>

    - type: <type>

    ## Objective

    <free text>

    ## Target Files

    - src/app.py

    ## Tasks

    - [ ] Add input validation
    - [x] Rename handler

    ## Acceptance Criteria

    - All unit tests pass

Files live at `<root>/<kind>-<YYYYMMDD>/task-<NN>.md`. Creation is exclusive,
so a path collision never overwrites an existing task file. Target files and
tasks only ever grow.
"""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, Field, field_validator

from gated_orchestrator.orchestrator.errors import AlreadyExists, NotFoundError, ParseError

logger = logging.getLogger(__name__)

SECTION_OBJECTIVE = "Objective"
SECTION_TARGET_FILES = "Target Files"
SECTION_TASKS = "Tasks"
SECTION_ACCEPTANCE = "Acceptance Criteria"
_SECTIONS = (SECTION_OBJECTIVE, SECTION_TARGET_FILES, SECTION_TASKS, SECTION_ACCEPTANCE)

_TASK_RE = re.compile(r"^- \[(?P<mark>[ xX])\] (?P<text>.+)$")
_SEQUENCE_RE = re.compile(r"^task-(?P<seq>\d+)\.md$")
_KIND_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")

# Every separator str.splitlines() breaks on.
_LINE_BREAKS = frozenset("\n\r\x0b\x0c\x1c\x1d\x1e\x85\u2028\u2029")


def _single_line(value: str, *, what: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError(f"{what} must not be empty")
    if any(ch in _LINE_BREAKS for ch in text):
        raise ValueError(f"{what} must be a single line: {text!r}")
    return text


class TaskItem(BaseModel):
    text: str
    done: bool = False

    @field_validator("text")
    @classmethod
    def _text_single_line(cls, v: str) -> str:
        return _single_line(v, what="Task text")


class TaskFile(BaseModel):
    """Structured content of a task file."""

    name: str
    type: str
    objective: str = ""
    target_files: list[str] = Field(default_factory=list)
    tasks: list[TaskItem] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)

    @field_validator("name", "type")
    @classmethod
    def _header_single_line(cls, v: str) -> str:
        return _single_line(v, what="Header field")

    @field_validator("objective")
    @classmethod
    def _objective_has_no_headings(cls, v: str) -> str:
        lines = v.strip().splitlines()
        for line in lines:
            if line.startswith("#"):
                raise ValueError("Objective must not contain Markdown headings")
        return "\n".join(lines)

    @field_validator("target_files", "acceptance_criteria")
    @classmethod
    def _items_single_line(cls, v: list[str]) -> list[str]:
        return [_single_line(item, what="List item") for item in v]

    @property
    def pending_tasks(self) -> list[str]:
        return [t.text for t in self.tasks if not t.done]


def render_task_file(task_file: TaskFile) -> str:
    lines = [f"# {task_file.name}", "", f"- type: {task_file.type}", ""]

    lines += [f"## {SECTION_OBJECTIVE}", ""]
    if task_file.objective:
        lines += [task_file.objective, ""]

    lines += [f"## {SECTION_TARGET_FILES}", ""]
    if task_file.target_files:
        lines += [f"- {p}" for p in task_file.target_files] + [""]

    lines += [f"## {SECTION_TASKS}", ""]
    if task_file.tasks:
        lines += [f"- [{'x' if t.done else ' '}] {t.text}" for t in task_file.tasks] + [""]

    lines += [f"## {SECTION_ACCEPTANCE}", ""]
    if task_file.acceptance_criteria:
        lines += [f"- {c}" for c in task_file.acceptance_criteria] + [""]

    return "\n".join(lines).rstrip() + "\n"


def _bullets(body: list[str], *, section: str, source: str) -> list[str]:
    items: list[str] = []
    for line in body:
        if not line.strip():
            continue
        if not line.startswith("- "):
            raise ParseError(f"{source}: unexpected line in {section!r}: {line!r}")
        items.append(line[2:].strip())
    return items


def parse_task_file(text: str, *, source: str = "<task file>") -> TaskFile:
    """Parse a task file document.

    Raises:
        ParseError: If the document does not follow the task file format.
    """

    lines = text.splitlines()
    if not lines or not lines[0].startswith("# "):
        raise ParseError(f"{source}: missing '# <name>' title line")
    name = lines[0][2:].strip()

    type_value: str | None = None
    sections: dict[str, list[str]] = {}
    current: str | None = None
    for line in lines[1:]:
        if line.startswith("## "):
            current = line[3:].strip()
            if current not in _SECTIONS:
                raise ParseError(f"{source}: unknown section {current!r}")
            if current in sections:
                raise ParseError(f"{source}: duplicate section {current!r}")
            sections[current] = []
            continue
        if current is None:
            if line.startswith("- type:"):
                type_value = line[len("- type:") :].strip()
            elif line.strip():
                raise ParseError(f"{source}: unexpected header line {line!r}")
            continue
        sections[current].append(line)

    if type_value is None:
        raise ParseError(f"{source}: missing '- type:' line")
    missing = [s for s in _SECTIONS if s not in sections]
    if missing:
        raise ParseError(f"{source}: missing section(s): {', '.join(missing)}")

    tasks: list[dict[str, object]] = []
    for line in sections[SECTION_TASKS]:
        if not line.strip():
            continue
        match = _TASK_RE.match(line)
        if match is None:
            raise ParseError(f"{source}: malformed task line {line!r}")
        tasks.append({"text": match.group("text"), "done": match.group("mark") != " "})

    try:
        return TaskFile(
            name=name,
            type=type_value,
            objective="\n".join(sections[SECTION_OBJECTIVE]).strip(),
            target_files=_bullets(
                sections[SECTION_TARGET_FILES], section=SECTION_TARGET_FILES, source=source
            ),
            tasks=[TaskItem.model_validate(t) for t in tasks],
            acceptance_criteria=_bullets(
                sections[SECTION_ACCEPTANCE], section=SECTION_ACCEPTANCE, source=source
            ),
        )
    except ValueError as e:
        raise ParseError(f"{source}: {e}") from e


def _today_utc() -> date:
    return datetime.now(tz=UTC).date()


class TaskFileStore(ABC):
    """Persistence interface for task files.

    Path naming and collision policy are shared; subclasses only store text.
    """

    def __init__(self, root: Path, *, today: Callable[[], date] = _today_utc) -> None:
        self.root = root
        self._today = today
        self._lock = threading.Lock()

    # -- storage primitives -------------------------------------------------

    @abstractmethod
    def _exists(self, path: Path) -> bool: ...

    @abstractmethod
    def _list_names(self, directory: Path) -> list[str]: ...

    @abstractmethod
    def _create_exclusive(self, path: Path, text: str) -> None:
        """Write `text` at a new path; raise AlreadyExists if it is taken."""

    @abstractmethod
    def _read_text(self, path: Path) -> str: ...

    @abstractmethod
    def _write_text(self, path: Path, text: str) -> None: ...

    # -- public API -----------------------------------------------------------

    def directory_for(self, kind: str) -> Path:
        if not _KIND_RE.match(kind):
            raise ValueError(f"Invalid task file kind: {kind!r}")
        return self.root / f"{kind}-{self._today():%Y%m%d}"

    def next_sequence(self, kind: str) -> int:
        existing = [
            int(m.group("seq"))
            for m in (_SEQUENCE_RE.match(n) for n in self._list_names(self.directory_for(kind)))
            if m is not None
        ]
        return max(existing, default=0) + 1

    def create(self, kind: str, fields: TaskFile, *, sequence: int | None = None) -> Path:
        """Create a task file and return its path.

        Args:
            kind: Category of work (e.g. "review", "test").
            fields: Template fields rendered into the document.
            sequence: Explicit sequence number. Allocated when omitted.

        Raises:
            AlreadyExists: If the path is taken. The caller picks a new sequence.
        """
        with self._lock:
            seq = self.next_sequence(kind) if sequence is None else sequence
            if seq < 1:
                raise ValueError("Task file sequence must be >= 1")
            path = self.directory_for(kind) / f"task-{seq:02d}.md"
            self._create_exclusive(path, render_task_file(fields))
        logger.info("Task file created", extra={"path": str(path), "kind": kind})
        return path

    def read(self, path: Path) -> TaskFile:
        if not self._exists(path):
            raise NotFoundError(f"Task file not found: {path}")
        return parse_task_file(self._read_text(path), source=str(path))

    def mark_task_done(self, path: Path, task_index: int) -> TaskFile:
        """Mark one task done. Marking an already-done task is a no-op."""

        with self._lock:
            task_file = self.read(path)
            if not 0 <= task_index < len(task_file.tasks):
                raise IndexError(
                    f"Task index {task_index} out of range (0..{len(task_file.tasks) - 1}): {path}"
                )
            if task_file.tasks[task_index].done:
                return task_file
            task_file.tasks[task_index].done = True
            self._write_text(path, render_task_file(task_file))
            return task_file

    def append_tasks(self, path: Path, texts: Iterable[str]) -> TaskFile:
        with self._lock:
            task_file = self.read(path)
            known = {t.text for t in task_file.tasks}
            added = False
            for text in texts:
                item = TaskItem(text=text)
                if item.text in known:
                    continue
                task_file.tasks.append(item)
                known.add(item.text)
                added = True
            if added:
                self._write_text(path, render_task_file(task_file))
            return task_file

    def append_target_files(self, path: Path, files: Iterable[str]) -> TaskFile:
        with self._lock:
            task_file = self.read(path)
            added = False
            for f in files:
                entry = _single_line(f, what="Target file")
                if entry not in task_file.target_files:
                    task_file.target_files.append(entry)
                    added = True
            if added:
                self._write_text(path, render_task_file(task_file))
            return task_file


class FileTaskFileStore(TaskFileStore):
    """Filesystem-backed task file store."""

    def _exists(self, path: Path) -> bool:
        return path.is_file()

    def _list_names(self, directory: Path) -> list[str]:
        if not directory.exists():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_file())

    def _create_exclusive(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("x", encoding="utf-8") as f:
                f.write(text)
        except FileExistsError as e:
            raise AlreadyExists(path) from e

    def _read_text(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def _write_text(self, path: Path, text: str) -> None:
        path.write_text(text, encoding="utf-8")


class InMemoryTaskFileStore(TaskFileStore):
    """Dictionary-backed store with the same naming and collision policy."""

    def __init__(
        self, root: Path = Path("tasks"), *, today: Callable[[], date] = _today_utc
    ) -> None:
        super().__init__(root, today=today)
        self.documents: dict[PurePosixPath, str] = {}

    @staticmethod
    def _key(path: Path) -> PurePosixPath:
        return PurePosixPath(path.as_posix())

    def _exists(self, path: Path) -> bool:
        return self._key(path) in self.documents

    def _list_names(self, directory: Path) -> list[str]:
        prefix = self._key(directory)
        return sorted(k.name for k in self.documents if k.parent == prefix)

    def _create_exclusive(self, path: Path, text: str) -> None:
        if self._key(path) in self.documents:
            raise AlreadyExists(path)
        self.documents[self._key(path)] = text

    def _read_text(self, path: Path) -> str:
        return self.documents[self._key(path)]

    def _write_text(self, path: Path, text: str) -> None:
        self.documents[self._key(path)] = text
