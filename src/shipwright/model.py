# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .errors import StateTransitionError
from .predicates import Never, SkipPredicate


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)

    @property
    def satisfies_dependents(self) -> bool:
        # skipped unlocks downstream steps exactly like success
        return self in (StepStatus.SUCCEEDED, StepStatus.SKIPPED)


@dataclass(frozen=True)
class Step:
    """
    A named unit of build work wrapping exactly one external command.

    Steps are built once from the pipeline definition and never mutated
    during a run. Dependencies derived from the artifact contract live on
    the graph, not on the step.
    """
    name: str
    command: str
    args: Tuple[str, ...] = ()
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    depends_on: Tuple[str, ...] = ()
    parallel: bool = False
    skip: SkipPredicate = field(default_factory=Never)
    max_retries: int = 0
    timeout: float | None = None

    # artifact contract, paths relative to the pipeline root
    produces: Tuple[str, ...] = ()
    consumes: Tuple[str, ...] = ()

    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("step name must not be empty")
        if not self.command:
            raise ValueError(f"step {self.name!r} has no command")
        if self.max_retries < 0:
            raise ValueError(f"step {self.name!r}: max_retries must be >= 0")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"step {self.name!r}: timeout must be positive")

        # normalise sequences so callers can pass lists
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        object.__setattr__(self, "depends_on", tuple(dict.fromkeys(self.depends_on)))
        object.__setattr__(self, "produces", tuple(self.produces))
        object.__setattr__(self, "consumes", tuple(self.consumes))
        object.__setattr__(self, "env", {k: str(v) for k, v in dict(self.env).items()})

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    @property
    def display_command(self) -> str:
        return " ".join(self.argv)


@dataclass
class StepResult:
    """Outcome of one step in one run. Produced by the executor or by a skip."""
    name: str
    status: StepStatus
    attempts: int = 0
    duration: float = 0.0
    started_at: float = 0.0
    finished_at: float = 0.0
    exit_code: Optional[int] = None
    timed_out: bool = False
    stdout_tail: str = ""
    stderr_tail: str = ""
    error: str | None = None
    # never dispatched: blocked by a failure, cancellation or deadlock
    not_run: bool = False

    @property
    def success(self) -> bool:
        return self.status.satisfies_dependents

    @classmethod
    def skipped(cls, name: str, at: float) -> StepResult:
        return cls(name=name, status=StepStatus.SKIPPED, started_at=at, finished_at=at)

    @classmethod
    def blocked(cls, name: str, reason: str, at: float) -> StepResult:
        return cls(
            name=name,
            status=StepStatus.FAILED,
            started_at=at,
            finished_at=at,
            error=f"not run: {reason}",
            not_run=True,
        )


@dataclass
class BuildMetrics:
    total_duration: float
    step_durations: Dict[str, float]
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    not_run: int = 0
    first_failure: str | None = None
    step_time: float = 0.0
    cancelled: bool = False

    @property
    def total_steps(self) -> int:
        return self.succeeded + self.failed + self.skipped + self.not_run

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.not_run == 0 and not self.cancelled

    def to_dict(self) -> dict:
        return {
            "total_duration": round(self.total_duration, 4),
            "step_time": round(self.step_time, 4),
            "steps": {k: round(v, 4) for k, v in self.step_durations.items()},
            "counts": {
                "succeeded": self.succeeded,
                "failed": self.failed,
                "skipped": self.skipped,
                "not_run": self.not_run,
            },
            "first_failure": self.first_failure,
            "cancelled": self.cancelled,
        }


_TRANSITIONS = {
    # PENDING -> FAILED: never dispatched (blocked, or its skip predicate raised)
    StepStatus.PENDING: {StepStatus.RUNNING, StepStatus.SKIPPED, StepStatus.FAILED},
    StepStatus.RUNNING: {StepStatus.SUCCEEDED, StepStatus.FAILED},
}


class ExecutionState:
    """
    Per-run status table. Created fresh for every run and only mutated by
    the scheduler; illegal transitions raise instead of being ignored.
    """

    def __init__(self, names: Iterable[str]):
        self._status: Dict[str, StepStatus] = {n: StepStatus.PENDING for n in names}

    def __getitem__(self, name: str) -> StepStatus:
        return self._status[name]

    def __iter__(self):
        return iter(self._status)

    def items(self):
        return self._status.items()

    def mark(self, name: str, status: StepStatus) -> None:
        current = self._status[name]
        if status not in _TRANSITIONS.get(current, set()):
            raise StateTransitionError(name, current.value, status.value)
        self._status[name] = status

    def with_status(self, *statuses: StepStatus) -> list[str]:
        return [n for n, s in self._status.items() if s in statuses]

    @property
    def completed(self) -> set[str]:
        """Names that satisfy dependents (succeeded or skipped)."""
        return {n for n, s in self._status.items() if s.satisfies_dependents}

    @property
    def started(self) -> set[str]:
        return {n for n, s in self._status.items() if s is not StepStatus.PENDING}

    @property
    def pending(self) -> list[str]:
        return self.with_status(StepStatus.PENDING)

    @property
    def failed(self) -> list[str]:
        return self.with_status(StepStatus.FAILED)
