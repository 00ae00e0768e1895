"""Console output formatting utilities for shipwright."""

from __future__ import annotations

import sys
import threading
from typing import List, Optional

from ..model import StepResult, StepStatus


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where normal output goes (defaults to stdout)
        """
        self.debug = debug
        self.stream = stream
        # steps report from worker threads; keep lines whole
        self._lock = threading.Lock()

    def _out(self, text: str = "") -> None:
        with self._lock:
            print(text, file=self.stream or sys.stdout, flush=True)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}")
        self._out("-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        profile: str,
        step_count: int,
        workers: int,
    ) -> None:
        """Print run start information."""
        self._out("\nBUILD STARTED")
        self._out(f"Pipeline: {pipeline}")
        self._out(f"Profile: {profile}")
        self._out(f"Steps: {step_count}")
        self._out(f"Workers: {workers}")
        self._out()

    def print_step_started(self, name: str, command: str) -> None:
        self._out(f"[{name}] ▶ {command}")

    def print_step_skipped(self, name: str, reason: str) -> None:
        self._out(f"[{name}] ⏭ skipped ({reason})")

    def print_step_finished(self, result: StepResult) -> None:
        if result.status is StepStatus.SUCCEEDED:
            suffix = f" after {result.attempts} attempts" if result.attempts > 1 else ""
            self._out(f"[{result.name}] ✓ {result.duration:.2f}s{suffix}")
        else:
            self._out(f"[{result.name}] ✗ {result.error or 'failed'}")

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print dependency levels."""
        for idx, level in enumerate(levels):
            self._out(f"=== Stage {idx + 1}: {', '.join(level)} ===")

    def print_report(self, report: str) -> None:
        """Print final results table."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        self._out(report)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)
