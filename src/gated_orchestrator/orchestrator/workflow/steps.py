"""Steps, loop regions and the workflow they belong to.

A workflow is an ordered list of steps plus a free-form context bag. Steps are
registered in document order; ids are 1-based ordinals. Jumps are expressed by
step name and resolved when the registry is validated.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from gated_orchestrator.orchestrator.workflow.state_machine import StepStatus, WorkflowStatus
from gated_orchestrator.workers.protocol import DelegationRequest

ContextBag = dict[str, object]
ActionHandler = Callable[[ContextBag], Mapping[str, object] | None]
RequestFactory = Callable[[ContextBag], DelegationRequest | Sequence[DelegationRequest]]
OutputHandler = Callable[[ContextBag, list[dict[str, object]]], Mapping[str, object] | None]
Predicate = Callable[[ContextBag], bool]


class StepKind(str, Enum):
    ACTION = "action"
    DELEGATE = "delegate"
    GATE = "gate"
    BRANCH = "branch"
    TERMINAL = "terminal"


@dataclass(slots=True)
class Step:
    id: int
    name: str
    kind: StepKind
    depends_on: tuple[int, ...] = ()
    status: StepStatus = StepStatus.PENDING

    action: ActionHandler | None = None
    request: RequestFactory | None = None
    on_outputs: OutputHandler | None = None
    metric_key: str | None = None
    critical_key: str | None = None
    predicate: Predicate | None = None

    # Successor step names. None means "the next step in document order", except
    # for a passing gate, which defaults to the terminal step.
    on_true: str | None = None
    on_false: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
        }
        if self.depends_on:
            out["dependsOn"] = list(self.depends_on)
        return out


@dataclass(frozen=True, slots=True)
class LoopRegion:
    """A contiguous range of steps that may be re-entered a bounded number of times."""

    name: str
    first: str
    last: str
    max_iterations: int

    def __post_init__(self) -> None:
        if isinstance(self.max_iterations, bool) or not isinstance(self.max_iterations, int):
            raise ValueError(f"Loop {self.name!r}: max_iterations must be an int")
        if self.max_iterations < 1:
            raise ValueError(f"Loop {self.name!r}: max_iterations must be >= 1")


class StepRegistry:
    """Owns the ordered steps of one workflow."""

    def __init__(self) -> None:
        self._steps: list[Step] = []
        self._by_name: dict[str, Step] = {}
        self._loops: list[LoopRegion] = []

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def loops(self) -> list[LoopRegion]:
        return list(self._loops)

    def get(self, name: str) -> Step:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Unknown step: {name!r}") from None

    def index_of(self, name: str) -> int:
        return self.get(name).id - 1

    def add(
        self,
        name: str,
        kind: StepKind,
        *,
        depends_on: Sequence[str] = (),
        **attrs: object,
    ) -> Step:
        if name in self._by_name:
            raise ValueError(f"Duplicate step name: {name!r}")
        dep_ids = []
        for dep in depends_on:
            if dep not in self._by_name:
                raise ValueError(f"Step {name!r} depends on {dep!r}, which is not a prior step")
            dep_ids.append(self._by_name[dep].id)
        step = Step(id=len(self._steps) + 1, name=name, kind=kind, depends_on=tuple(dep_ids))
        for key, value in attrs.items():
            if not hasattr(step, key) or key in {"id", "name", "kind", "depends_on", "status"}:
                raise TypeError(f"Unknown step attribute: {key!r}")
            setattr(step, key, value)
        self._steps.append(step)
        self._by_name[name] = step
        return step

    def action(self, name: str, handler: ActionHandler, **kw: object) -> Step:
        return self.add(name, StepKind.ACTION, action=handler, **kw)  # type: ignore[arg-type]

    def delegate(
        self,
        name: str,
        request: RequestFactory,
        on_outputs: OutputHandler | None = None,
        **kw: object,
    ) -> Step:
        return self.add(  # type: ignore[arg-type]
            name, StepKind.DELEGATE, request=request, on_outputs=on_outputs, **kw
        )

    def gate(
        self, name: str, *, metric_key: str, critical_key: str | None = None, **kw: object
    ) -> Step:
        return self.add(  # type: ignore[arg-type]
            name, StepKind.GATE, metric_key=metric_key, critical_key=critical_key, **kw
        )

    def branch(self, name: str, predicate: Predicate, **kw: object) -> Step:
        return self.add(name, StepKind.BRANCH, predicate=predicate, **kw)  # type: ignore[arg-type]

    def terminal(self, name: str, handler: ActionHandler | None = None, **kw: object) -> Step:
        return self.add(name, StepKind.TERMINAL, action=handler, **kw)  # type: ignore[arg-type]

    def loop(self, name: str, *, first: str, last: str, max_iterations: int) -> LoopRegion:
        region = LoopRegion(name=name, first=first, last=last, max_iterations=max_iterations)
        self._loops.append(region)
        return region

    def terminal_index(self) -> int:
        for idx, step in enumerate(self._steps):
            if step.kind is StepKind.TERMINAL:
                return idx
        raise ValueError("Workflow has no terminal step")

    def loop_starting_at(self, index: int) -> LoopRegion | None:
        for region in self._loops:
            if self.index_of(region.first) == index:
                return region
        return None

    def loop_range(self, region: LoopRegion) -> range:
        return range(self.index_of(region.first), self.index_of(region.last) + 1)

    def validate(self) -> None:
        """Check the structure once, before a run.

        Every backward jump must target the first step of a loop region that
        contains the jumping step, so every cycle is bounded by a budget.
        """

        if not self._steps:
            raise ValueError("Workflow has no steps")
        self.terminal_index()

        seen_firsts: set[str] = set()
        for region in self._loops:
            for ref in (region.first, region.last):
                if ref not in self._by_name:
                    raise ValueError(f"Loop {region.name!r} references unknown step {ref!r}")
            if self.index_of(region.first) > self.index_of(region.last):
                raise ValueError(f"Loop {region.name!r}: first step comes after last step")
            if region.first in seen_firsts:
                raise ValueError(f"Two loops start at step {region.first!r}")
            seen_firsts.add(region.first)

        for idx, step in enumerate(self._steps):
            if step.kind is StepKind.ACTION and step.action is None:
                raise ValueError(f"Action step {step.name!r} has no handler")
            if step.kind is StepKind.DELEGATE and step.request is None:
                raise ValueError(f"Delegate step {step.name!r} has no request factory")
            if step.kind is StepKind.GATE and not step.metric_key:
                raise ValueError(f"Gate step {step.name!r} has no metric key")
            if step.kind is StepKind.BRANCH and step.predicate is None:
                raise ValueError(f"Branch step {step.name!r} has no predicate")

            for target in (step.on_true, step.on_false):
                if target is None:
                    continue
                if target not in self._by_name:
                    raise ValueError(f"Step {step.name!r} jumps to unknown step {target!r}")
                target_idx = self.index_of(target)
                if target_idx > idx:
                    continue
                region = self.loop_starting_at(target_idx)
                if region is None or idx not in self.loop_range(region):
                    raise ValueError(
                        f"Step {step.name!r} jumps back to {target!r} outside a bounded loop"
                    )


@dataclass(frozen=True, slots=True)
class RunFailure:
    kind: str
    message: str
    step: str | None = None

    def to_json(self) -> dict[str, object]:
        return {"kind": self.kind, "message": self.message, "step": self.step}


@dataclass(slots=True)
class Workflow:
    name: str
    registry: StepRegistry
    context: ContextBag = field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.PENDING
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    iterations: dict[str, int] = field(default_factory=dict)
    failure: RunFailure | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    _abort: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def steps(self) -> list[Step]:
        return self.registry.steps

    def step(self, name: str) -> Step:
        return self.registry.get(name)

    def request_abort(self) -> None:
        """Ask the engine to stop at the next step boundary."""

        self._abort.set()

    @property
    def abort_requested(self) -> bool:
        return self._abort.is_set()

    def to_json(self) -> dict[str, object]:
        return {
            "runId": self.run_id,
            "name": self.name,
            "status": self.status.value,
            "steps": [s.to_json() for s in self.steps],
            "iterations": dict(self.iterations),
            "failure": self.failure.to_json() if self.failure else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }
