# report.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .model import BuildMetrics, StepResult, StepStatus

STATUS_LABELS = {
    StepStatus.SUCCEEDED: "PASSED",
    StepStatus.FAILED: "FAILED",
    StepStatus.SKIPPED: "SKIPPED",
}
NOT_RUN = "NOT RUN"
ERROR_TAIL_LINES = 20


class ResultCollector:
    """
    Pure aggregation of step results; nothing here runs or prints anything.

    `expected` is the full list of step names so steps that never ran
    (blocked by a failure, or cancelled before dispatch) still show up.
    """

    def __init__(self, expected: Iterable[str] = ()):
        self.expected: List[str] = list(expected)
        self.results: List[StepResult] = []
        self.accumulated: float = 0.0

    def record(self, result: StepResult) -> None:
        self.results.append(result)
        self.accumulated += result.duration
        if result.name not in self.expected:
            self.expected.append(result.name)

    def get(self, name: str) -> Optional[StepResult]:
        for r in self.results:
            if r.name == name:
                return r
        return None

    @property
    def by_name(self) -> Dict[str, StepResult]:
        return {r.name: r for r in self.results}

    def wall_clock(self) -> float:
        timed = [r for r in self.results if r.finished_at and not r.not_run]
        if not timed:
            return 0.0
        return max(r.finished_at for r in timed) - min(r.started_at for r in timed)

    def summary(self, cancelled: bool = False) -> BuildMetrics:
        by_name = self.by_name
        ran = [r for r in self.results if not r.not_run]
        ran_names = {r.name for r in ran}
        counts = {s: 0 for s in StepStatus}
        for r in ran:
            counts[r.status] += 1

        first_failure = next((r.name for r in ran if r.status is StepStatus.FAILED), None)
        return BuildMetrics(
            total_duration=self.wall_clock(),
            step_durations={n: by_name[n].duration for n in self.expected if n in ran_names},
            succeeded=counts[StepStatus.SUCCEEDED],
            failed=counts[StepStatus.FAILED],
            skipped=counts[StepStatus.SKIPPED],
            not_run=len([n for n in self.expected if n not in ran_names]),
            first_failure=first_failure,
            step_time=self.accumulated,
            cancelled=cancelled,
        )

    def render(self, cancelled: bool = False) -> str:
        by_name = self.by_name
        metrics = self.summary(cancelled=cancelled)
        width = max([len("STEP")] + [len(n) for n in self.expected])

        lines = [f"{'STEP':<{width}}  {'STATUS':<8}  {'ATTEMPTS':>8}  {'DURATION':>9}"]
        lines.append("-" * len(lines[0]))
        for name in self.expected:
            r = by_name.get(name)
            if r is None or r.not_run:
                lines.append(f"{name:<{width}}  {NOT_RUN:<8}  {'-':>8}  {'-':>9}")
                continue
            attempts = str(r.attempts) if r.status is not StepStatus.SKIPPED else "-"
            lines.append(
                f"{name:<{width}}  {STATUS_LABELS[r.status]:<8}  {attempts:>8}  {r.duration:>8.2f}s"
            )

        for r in self.results:
            if r.status is not StepStatus.FAILED or r.not_run:
                continue
            lines.append("")
            lines.append(f"--- {r.name}: {r.error or 'failed'}")
            tail = _last_lines(r.stderr_tail or r.stdout_tail, ERROR_TAIL_LINES)
            if tail:
                lines.extend(f"    {line}" for line in tail)

        lines.append("")
        total = metrics.total_steps
        totals = (
            f"{metrics.succeeded}/{total} passed, {metrics.failed} failed, "
            f"{metrics.skipped} skipped, {metrics.not_run} not run "
            f"in {metrics.total_duration:.2f}s"
        )
        if cancelled:
            totals += " (cancelled)"
        lines.append(totals)
        return "\n".join(lines)


def _last_lines(text: str, n: int) -> List[str]:
    stripped = text.rstrip()
    if not stripped:
        return []
    return stripped.splitlines()[-n:]


def write_metrics(path: str | Path, metrics: BuildMetrics, *, extra: Optional[dict] = None) -> Path:
    """Write the machine-readable metrics file consumed by threshold checks."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = metrics.to_dict()
    if extra:
        payload.update(extra)
    p.write_text(json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8")
    return p
