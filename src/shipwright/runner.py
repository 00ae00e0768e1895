# runner.py
from __future__ import annotations

import inspect
import logging
import os
import runpy
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from .config import OrchestratorConfig
from .dag import StepGraph
from .errors import (
    BuildFailedError,
    CancellationError,
    DeadlockError,
    PipelineLoadError,
)
from .executor import CancelToken, StepExecutor
from .git_facts.git import head_sha, is_dirty
from .model import BuildMetrics, Step
from .report import ResultCollector, write_metrics
from .scheduler import Scheduler
from .workspace import ensure_clean_dir

if TYPE_CHECKING:
    from .ui.console import Console

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


# ----------------------------------------------------------------------
# Pipeline loading (local file)
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path, config: Optional[OrchestratorConfig] = None) -> List[Step]:
    """
    Load steps from a python pipeline file.

    The file must define either:
      - steps() -> List[Step]        (or steps(config) to see the run config)
      - STEPS = [Step, ...]
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise PipelineLoadError(f"Pipeline file not found: {p}")
    if p.suffix != ".py":
        raise PipelineLoadError(f"Pipeline must be a .py file, got: {p.name}")

    module_name = f"shipwright_pipeline_{p.stem}"
    try:
        globals_dict = runpy.run_path(str(p), run_name=module_name)

        steps = None
        fn = globals_dict.get("steps")
        if callable(fn):
            params = inspect.signature(fn).parameters
            steps = fn(config or OrchestratorConfig()) if params else fn()
        elif "STEPS" in globals_dict:
            steps = globals_dict["STEPS"]
    except Exception as e:
        # anything the user file raises while importing or building its steps
        raise PipelineLoadError(f"{p.name} raised {type(e).__name__}: {e}") from e

    if not isinstance(steps, list) or not all(isinstance(s, Step) for s in steps):
        raise PipelineLoadError(
            f"{p.name} must define steps() -> List[Step] or STEPS = [Step, ...]"
        )
    return steps


# ----------------------------------------------------------------------
# Build variables
# ----------------------------------------------------------------------

def build_variables(root: Path, environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """BUILD_NUMBER and GIT_COMMIT for every step; explicit environment wins."""
    environ = os.environ if environ is None else environ
    out = {"BUILD_NUMBER": environ.get("BUILD_NUMBER") or "dev"}
    commit = environ.get("GIT_COMMIT")
    if not commit:
        try:
            commit = head_sha(cwd=str(root))
            if is_dirty(cwd=str(root)):
                commit += "-dirty"
        except (subprocess.CalledProcessError, FileNotFoundError):
            commit = "unknown"
    out["GIT_COMMIT"] = commit
    return out


# ----------------------------------------------------------------------
# Run facade
# ----------------------------------------------------------------------

@dataclass
class RunOutcome:
    metrics: BuildMetrics
    report: str
    exit_code: int
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == EXIT_OK


def run_pipeline(
    steps: List[Step],
    config: OrchestratorConfig,
    *,
    console: Optional["Console"] = None,
    cancel_token: Optional[CancelToken] = None,
) -> RunOutcome:
    """
    Validate, run and report. Always returns an outcome with a rendered
    report; graph errors are raised before anything runs.
    """
    graph = StepGraph(steps)
    graph.validate()

    if config.clean:
        logger.info("cleaning %s", config.output_root)
        ensure_clean_dir(config.output_root)

    token = cancel_token or CancelToken()
    scheduler = Scheduler(config, StepExecutor(config, token), token, console=console)

    error: Optional[Exception] = None
    try:
        metrics = scheduler.run(graph)
        exit_code = EXIT_OK
    except CancellationError as e:
        metrics, exit_code, error = e.metrics, EXIT_CANCELLED, e
    except (BuildFailedError, DeadlockError) as e:
        metrics, exit_code, error = e.metrics, EXIT_FAILED, e

    collector = scheduler.collector or ResultCollector(graph.names)
    if metrics is None:
        metrics = collector.summary()
    report = collector.render(cancelled=token.cancelled)

    if config.metrics_path:
        write_metrics(config.metrics_path, metrics, extra={"profile": config.profile})

    return RunOutcome(metrics=metrics, report=report, exit_code=exit_code, error=error)


def plan(steps: List[Step]) -> List[List[str]]:
    graph = StepGraph(steps)
    graph.validate()
    return graph.levels()

