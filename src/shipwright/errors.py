# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .model import BuildMetrics


class ShipwrightError(Exception):
    """Base class for everything the orchestrator raises on purpose."""


# ----------------------------------------------------------------------
# Graph errors: fatal, raised before any step executes
# ----------------------------------------------------------------------

CYCLE = "cycle"
UNKNOWN_DEPENDENCY = "unknown_dependency"
DUPLICATE_STEP = "duplicate_step"
OUTPUT_OVERLAP = "output_overlap"


@dataclass(eq=False)
class GraphError(ShipwrightError):
    """
    Structural problem with the step graph.

    `path` is the offending cycle (first node repeated at the end), or the
    step names involved for the other kinds.
    """
    kind: str
    message: str
    path: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        if self.kind == CYCLE and self.path:
            return f"{self.kind}: {self.message} ({' -> '.join(self.path)})"
        return f"{self.kind}: {self.message}"


class DuplicateStepError(GraphError):
    def __init__(self, name: str):
        super().__init__(DUPLICATE_STEP, f"step {name!r} is already registered", [name])


# ----------------------------------------------------------------------
# Execution errors
# ----------------------------------------------------------------------

@dataclass(eq=False)
class StepExecutionError(ShipwrightError):
    """
    One failed attempt of a step (non-zero exit or timeout). The executor
    builds these to describe attempts; they are folded into a StepResult
    and never leave `execute()`.
    """
    step: str
    attempt: int
    exit_code: Optional[int] = None
    timed_out: bool = False
    detail: str = ""

    def __str__(self) -> str:
        if self.timed_out:
            reason = "timed out"
        elif self.exit_code is None:
            reason = "could not start"
        else:
            reason = f"exit={self.exit_code}"
        msg = f"step {self.step!r} attempt {self.attempt} failed ({reason})"
        if self.detail:
            msg += f": {self.detail}"
        return msg


@dataclass(eq=False)
class StateTransitionError(ShipwrightError):
    step: str
    current: str
    requested: str

    def __str__(self) -> str:
        return f"illegal transition for step {self.step!r}: {self.current} -> {self.requested}"


# ----------------------------------------------------------------------
# Run-level errors: carry the metrics so a report can still be printed
# ----------------------------------------------------------------------

class RunError(ShipwrightError):
    metrics: Optional["BuildMetrics"] = None


class DeadlockError(RunError):
    def __init__(self, stuck: List[str], metrics: Optional["BuildMetrics"] = None):
        self.stuck = list(stuck)
        self.metrics = metrics
        super().__init__(f"deadlock: pending steps with nothing runnable: {', '.join(self.stuck)}")


class CancellationError(RunError):
    def __init__(self, reason: str, metrics: Optional["BuildMetrics"] = None):
        self.reason = reason
        self.metrics = metrics
        super().__init__(f"run cancelled: {reason}")


class BuildFailedError(RunError):
    def __init__(self, step: str, message: str, metrics: Optional["BuildMetrics"] = None):
        self.step = step
        self.message = message
        self.metrics = metrics
        super().__init__(f"step {step!r} failed: {message}")


class PipelineLoadError(ShipwrightError):
    pass
