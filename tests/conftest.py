import sys
import threading
import time

import pytest

from shipwright.config import OrchestratorConfig
from shipwright.dsl import step
from shipwright.executor import CancelToken
from shipwright.model import StepResult, StepStatus


@pytest.fixture
def config(tmp_path):
    return OrchestratorConfig(
        root_dir=tmp_path,
        concurrency_limit=4,
        retry_base_delay=0.01,
        kill_grace_period=0.5,
        poll_interval=0.02,
    )


@pytest.fixture
def py():
    """Factory for steps that run a python snippet with the current interpreter."""
    def make(name, code, **kwargs):
        return step(name, sys.executable, "-c", code, **kwargs)
    return make


class FakeExecutor:
    """
    Stands in for StepExecutor: sleeps instead of spawning, records what ran
    and how many steps were active at once.
    """

    def __init__(self, durations=None, failing=(), default=0.0):
        self.cancel_token = CancelToken()
        self.durations = dict(durations or {})
        self.failing = set(failing)
        self.default = default
        self.calls = []
        self.intervals = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def resolve_env(self, step):
        return {}

    def execute(self, step, resolved_env=None):
        start = time.monotonic()
        with self._lock:
            self.calls.append(step.name)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.durations.get(step.name, self.default))
        with self._lock:
            self.active -= 1
        end = time.monotonic()
        self.intervals[step.name] = (start, end)
        failed = step.name in self.failing
        return StepResult(
            name=step.name,
            status=StepStatus.FAILED if failed else StepStatus.SUCCEEDED,
            attempts=1,
            duration=end - start,
            started_at=start,
            finished_at=end,
            exit_code=1 if failed else 0,
            error="boom" if failed else None,
        )


@pytest.fixture
def fake_executor():
    return FakeExecutor
