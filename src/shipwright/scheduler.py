# scheduler.py
from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from .config import OrchestratorConfig
from .dag import StepGraph
from .errors import BuildFailedError, CancellationError, DeadlockError
from .executor import CancelToken, StepExecutor
from .model import BuildMetrics, ExecutionState, Step, StepResult, StepStatus
from .report import ResultCollector

if TYPE_CHECKING:
    from .ui.console import Console

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Drives a validated StepGraph to completion.

    Parallel-eligible steps share a pool bounded by the concurrency limit.
    A step that is not parallel-eligible runs alone: it is dispatched only
    when nothing else is in flight, and nothing else starts until it ends.
    Sequential steps go in declaration order.

    Failure handling is cooperative: after the first failure nothing new is
    launched, already running steps are allowed to finish, and the run then
    raises BuildFailedError for the first failing step. Steps that were never
    dispatched end up FAILED with a "not run" result, so every step finishes
    the run in exactly one terminal state.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        executor: Optional[StepExecutor] = None,
        cancel_token: Optional[CancelToken] = None,
        console: Optional["Console"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.cancel_token = cancel_token or (executor.cancel_token if executor else CancelToken())
        self.executor = executor or StepExecutor(config, self.cancel_token)
        self.console = console
        self.clock = clock
        self.collector: Optional[ResultCollector] = None
        self.state: Optional[ExecutionState] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.cancel_token.cancel(reason)

    # ------------------------------------------------------------------
    # main loop
    # ------------------------------------------------------------------

    def run(self, graph: StepGraph, concurrency_limit: Optional[int] = None) -> BuildMetrics:
        graph.validate()

        if self.config.force_serial:
            limit = 1
        else:
            limit = concurrency_limit or self.config.effective_concurrency

        state = ExecutionState(graph.names)
        collector = ResultCollector(graph.names)
        self.state, self.collector = state, collector

        context = self.config.skip_context()
        in_flight: Dict[Future, Step] = {}
        exclusive: Optional[Step] = None
        first_failure: Optional[StepResult] = None
        deadline = self.clock() + self.config.run_timeout if self.config.run_timeout else None

        logger.debug("run started: %d steps, limit=%d", len(graph), limit)

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="shipwright") as pool:
            try:
                while True:
                    stopping = self.cancel_token.cancelled or (
                        first_failure is not None and self.config.fail_fast
                    )

                    if not stopping and exclusive is None:
                        exclusive, broken = self._dispatch(graph, state, collector, context, pool, in_flight, limit)
                        if broken and first_failure is None:
                            first_failure = broken[0]
                            continue

                    if not in_flight:
                        break

                    timeout = self.config.poll_interval
                    if deadline is not None and not self.cancel_token.cancelled:
                        timeout = max(0.0, min(timeout, deadline - self.clock()))
                    done, _ = wait(list(in_flight), timeout=timeout, return_when=FIRST_COMPLETED)

                    if deadline is not None and self.clock() >= deadline and not self.cancel_token.cancelled:
                        logger.warning("global run timeout of %ss reached", self.config.run_timeout)
                        self.cancel_token.cancel(f"run timeout after {self.config.run_timeout}s")

                    for fut in done:
                        step = in_flight.pop(fut)
                        result = fut.result()
                        self._finish(step, result, state, collector)
                        if exclusive is step:
                            exclusive = None
                        if result.status is StepStatus.FAILED and first_failure is None:
                            first_failure = result
                            if self.config.fail_fast and in_flight:
                                logger.info(
                                    "step %r failed; waiting for %d running step(s) to finish",
                                    step.name, len(in_flight),
                                )
            except KeyboardInterrupt:
                self.cancel_token.cancel("interrupted")
                self._drain(in_flight, state, collector)

        stuck = state.pending
        self._close_out(graph, state, collector, first_failure)
        metrics = collector.summary(cancelled=self.cancel_token.cancelled)

        if self.cancel_token.cancelled:
            raise CancellationError(self.cancel_token.reason or "cancelled", metrics)

        if first_failure is not None:
            raise BuildFailedError(first_failure.name, first_failure.error or "failed", metrics)

        if stuck:
            raise DeadlockError(stuck, metrics)

        return metrics

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _dispatch(
        self, graph, state, collector, context, pool, in_flight, limit
    ) -> Tuple[Optional[Step], List[StepResult]]:
        """
        Resolve skips, then launch what fits. Returns the step that was
        launched exclusively, if any, and the results of steps whose skip
        predicate raised.
        """
        broken: List[StepResult] = []
        while True:
            ready = graph.runnable_steps(state.completed, context, started=state.started)
            for r in ready:
                if r.error is None:
                    continue
                state.mark(r.step.name, StepStatus.FAILED)
                now = self.clock()
                result = StepResult(r.step.name, StepStatus.FAILED, started_at=now, finished_at=now, error=r.error)
                collector.record(result)
                broken.append(result)
                logger.error("[%s] %s", r.step.name, r.error)
                if self.console:
                    self.console.print_step_finished(result)
            ready = [r for r in ready if r.error is None]

            skipped = [r.step for r in ready if r.skip]
            for step in skipped:
                state.mark(step.name, StepStatus.SKIPPED)
                result = StepResult.skipped(step.name, self.clock())
                collector.record(result)
                logger.info("[%s] skipped (%s)", step.name, step.skip.describe())
                if self.console:
                    self.console.print_step_skipped(step.name, step.skip.describe())
            if not skipped:
                break
            # a skip can unlock more steps (including more skips)

        if not ready or (broken and self.config.fail_fast):
            return None, broken

        serial = self.config.force_serial
        parallel_batch = [r.step for r in ready if r.step.parallel and not serial]
        sequential_batch = [r.step for r in ready if not (r.step.parallel and not serial)]

        for step in parallel_batch:
            if len(in_flight) >= limit:
                break
            self._submit(step, state, pool, in_flight)

        if not in_flight and sequential_batch:
            step = sequential_batch[0]
            self._submit(step, state, pool, in_flight)
            return step, broken

        return None, broken

    def _submit(self, step: Step, state: ExecutionState, pool: ThreadPoolExecutor, in_flight: Dict[Future, Step]) -> None:
        state.mark(step.name, StepStatus.RUNNING)
        env = self.executor.resolve_env(step)
        if self.console:
            self.console.print_step_started(step.name, step.display_command)
        in_flight[pool.submit(self.executor.execute, step, env)] = step

    def _finish(self, step: Step, result: StepResult, state: ExecutionState, collector: ResultCollector) -> None:
        final = StepStatus.SUCCEEDED if result.status is StepStatus.SUCCEEDED else StepStatus.FAILED
        state.mark(step.name, final)
        collector.record(result)
        if self.console:
            self.console.print_step_finished(result)

    def _drain(self, in_flight: Dict[Future, Step], state: ExecutionState, collector: ResultCollector) -> None:
        # executors see the token and terminate their processes
        for fut, step in list(in_flight.items()):
            result = fut.result()
            self._finish(step, result, state, collector)
        in_flight.clear()


    def _close_out(
        self,
        graph: StepGraph,
        state: ExecutionState,
        collector: ResultCollector,
        first_failure: Optional[StepResult],
    ) -> None:
        """Give every step that never ran its terminal FAILED / not-run result."""
        failed = set(state.failed)
        now = self.clock()
        for name in state.pending:
            culprits = sorted(graph.ancestors(name) & failed)
            if self.cancel_token.cancelled:
                reason = "run cancelled"
            elif culprits:
                reason = f"dependency '{culprits[0]}' failed"
            elif first_failure is not None:
                reason = f"stopped after '{first_failure.name}' failed"
            else:
                reason = "deadlock"
            state.mark(name, StepStatus.FAILED)
            collector.record(StepResult.blocked(name, reason, now))
