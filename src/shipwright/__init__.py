from .config import OrchestratorConfig
from .dag import StepGraph
from .dsl import build, cmd, matrix, pipeline, sh, step, StepBuilder
from .executor import CancelToken, StepExecutor
from .model import BuildMetrics, Step, StepResult, StepStatus
from .predicates import Always, Custom, EnvFlagSet, Never, SkipContext
from .report import ResultCollector
from .runner import load_pipeline, run_pipeline
from .scheduler import Scheduler

__all__ = [
    "OrchestratorConfig", "StepGraph", "build", "cmd", "matrix", "pipeline", "sh", "step",
    "StepBuilder", "CancelToken", "StepExecutor", "BuildMetrics", "Step", "StepResult",
    "StepStatus", "Always", "Custom", "EnvFlagSet", "Never", "SkipContext", "ResultCollector",
    "load_pipeline", "run_pipeline", "Scheduler",
]
