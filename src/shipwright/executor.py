# executor.py
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from .config import OrchestratorConfig
from .errors import StepExecutionError
from .model import Step, StepResult, StepStatus
from .workspace import step_output_dir

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"


class CancelToken:
    """
    Run-wide cancellation flag shared by the scheduler and every executor.

    Set by a signal handler, a caller, or the global run timeout. Waiting on
    the token doubles as an interruptible sleep for retry backoff.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to `timeout`; True if cancellation happened meanwhile."""
        return self._event.wait(timeout)


@dataclass
class _Attempt:
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False
    spawn_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not (self.timed_out or self.cancelled or self.spawn_error)


class StepExecutor:
    """
    Runs exactly one step as an external process.

    `execute()` never raises: non-zero exits, timeouts, spawn problems and
    cancellation all come back as a FAILED StepResult.
    """

    def __init__(self, config: OrchestratorConfig, cancel_token: CancelToken | None = None):
        self.config = config
        self.cancel_token = cancel_token or CancelToken()

    # ------------------------------------------------------------------
    # environment
    # ------------------------------------------------------------------

    def step_output(self, step: Step) -> Path:
        return step_output_dir(self.config.output_root, step.name, create=False)

    def resolve_env(self, step: Step, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Precedence, lowest first: inherited process env, orchestrator-global
        config, step-level overrides.
        """
        env = dict(os.environ if base is None else base)
        env.update(self.config.global_env())
        env["SHIPWRIGHT_STEP"] = step.name
        env["SHIPWRIGHT_STEP_OUTPUT"] = str(self.step_output(step))
        env.update(step.env)
        return env

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def execute(self, step: Step, resolved_env: Optional[Mapping[str, str]] = None) -> StepResult:
        started = time.monotonic()
        try:
            return self._execute(step, resolved_env, started)
        except Exception as e:  # last line of defence: execute() must not raise
            logger.exception("[%s] executor error", step.name)
            finished = time.monotonic()
            return StepResult(
                name=step.name,
                status=StepStatus.FAILED,
                attempts=1,
                duration=finished - started,
                started_at=started,
                finished_at=finished,
                error=f"executor error: {e}",
            )

    def _execute(self, step: Step, resolved_env: Optional[Mapping[str, str]], started: float) -> StepResult:
        env = dict(resolved_env) if resolved_env is not None else self.resolve_env(step)
        cwd = (self.config.root_dir / (step.cwd or ".")).resolve()
        timeout = step.timeout or self.config.default_step_timeout
        max_attempts = step.max_retries + 1

        self.step_output(step).mkdir(parents=True, exist_ok=True)

        attempt = 0
        last = _Attempt()
        failure: StepExecutionError | None = None

        while attempt < max_attempts:
            if self.cancel_token.cancelled:
                last = _Attempt(cancelled=True)
                break

            attempt += 1
            logger.info("[%s] attempt %d/%d: %s", step.name, attempt, max_attempts, step.display_command)
            last = self._run_once(step, cwd, env, timeout)

            if last.ok:
                failure = None
                break

            failure = StepExecutionError(
                step=step.name,
                attempt=attempt,
                exit_code=last.exit_code if not last.spawn_error else None,
                timed_out=last.timed_out,
                detail=last.spawn_error or (f"timed out after {timeout}s" if last.timed_out else ""),
            )

            if last.spawn_error or last.cancelled or attempt >= max_attempts:
                break

            delay = self.config.retry_base_delay * (2 ** (attempt - 1))
            logger.warning("%s; retrying in %.2fs", failure, delay)
            if self.cancel_token.wait(delay):
                last.cancelled = True
                break

        finished = time.monotonic()
        tail = self.config.output_tail

        if last.ok:
            status, error = StepStatus.SUCCEEDED, None
        elif last.cancelled:
            status = StepStatus.FAILED
            error = f"cancelled ({self.cancel_token.reason or 'cancelled'})"
        else:
            status = StepStatus.FAILED
            error = str(failure) if failure else "failed"

        if status is StepStatus.FAILED:
            logger.error("[%s] failed after %d attempt(s): %s", step.name, attempt, error)

        return StepResult(
            name=step.name,
            status=status,
            attempts=attempt,
            duration=finished - started,
            started_at=started,
            finished_at=finished,
            exit_code=last.exit_code,
            timed_out=last.timed_out,
            stdout_tail=last.stdout[-tail:] if tail else "",
            stderr_tail=last.stderr[-tail:] if tail else "",
            error=error,
        )

    # ------------------------------------------------------------------
    # process lifecycle
    # ------------------------------------------------------------------

    def _run_once(self, step: Step, cwd: Path, env: Dict[str, str], timeout: float | None) -> _Attempt:
        if not cwd.is_dir():
            return _Attempt(spawn_error=f"working directory not found: {cwd}")

        capture = not self.config.passthrough
        try:
            proc = subprocess.Popen(
                step.argv,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE if capture else None,
                stderr=subprocess.PIPE if capture else None,
                text=True,
                errors="replace",
                start_new_session=_POSIX,  # own process group, so the whole tree can be signalled
            )
        except OSError as e:
            return _Attempt(spawn_error=f"could not start {step.command!r}: {e}")

        deadline = time.monotonic() + timeout if timeout else None
        poll = self.config.poll_interval

        while True:
            wait_for = poll
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    out, err = self._terminate(proc, step.name, "timeout")
                    return _Attempt(proc.returncode, out or "", err or "", timed_out=True)
                wait_for = min(poll, remaining)

            try:
                out, err = proc.communicate(timeout=wait_for)
                return _Attempt(proc.returncode, out or "", err or "")
            except subprocess.TimeoutExpired:
                pass

            if self.cancel_token.cancelled:
                out, err = self._terminate(proc, step.name, "cancellation")
                return _Attempt(proc.returncode, out or "", err or "", cancelled=True)

    def _terminate(self, proc: subprocess.Popen, name: str, why: str) -> Tuple[str, str]:
        """SIGTERM the process group, then SIGKILL once the grace period runs out."""
        grace = self.config.kill_grace_period
        logger.warning("[%s] terminating (pid %s) on %s", name, proc.pid, why)
        self._signal(proc, force=False)
        try:
            return proc.communicate(timeout=grace)
        except subprocess.TimeoutExpired:
            pass

        logger.warning("[%s] still alive after %.1fs grace period, killing", name, grace)
        self._signal(proc, force=True)
        try:
            return proc.communicate(timeout=max(grace, 1.0))
        except subprocess.TimeoutExpired:
            # a grandchild that left the process group still holds the pipes
            proc.wait()
            return "", ""

    @staticmethod
    def _signal(proc: subprocess.Popen, *, force: bool) -> None:
        if proc.poll() is not None and not _POSIX:
            return
        try:
            if _POSIX:
                os.killpg(proc.pid, signal.SIGKILL if force else signal.SIGTERM)
            elif force:
                proc.kill()
            else:
                proc.terminate()
        except (ProcessLookupError, PermissionError):
            # already gone
            pass
