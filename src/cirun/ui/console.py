"""Console output formatting utilities for cirun."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from cirun.model import Job, JobResult, Run, RunResult, Status, Step, StepResult


class Console:
    """
    Centralized console output formatting.

    Also a result sink: the scheduler and job runner report progress
    through the `run_started` ... `run_finished` hooks. Jobs run on worker
    threads, so every multi-line block is printed under a lock.
    """

    def __init__(self, debug: bool = False, tail_lines: int = 20):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            tail_lines: Lines of captured output shown for a failed step
        """
        self.debug = debug
        self.tail_lines = tail_lines
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    # ------------------------------------------------------------------
    # Result sink hooks
    # ------------------------------------------------------------------

    def run_started(self, run: Run) -> None:
        self._emit(
            "\nRUN STARTED",
            f"Run ID: {run.run_id}",
            f"Event: {run.event.kind.value} ({run.event.ref})",
            f"Jobs: {len(run.jobs)}",
            "",
        )

    def job_started(self, job: Job) -> None:
        self._emit(f"\nJOB STARTED: {job.display_name}")

    def step_started(self, job: Job, step: Step) -> None:
        self._emit(f"[{job.name}] STEP: {step.name}")

    def step_finished(self, job: Job, result: StepResult) -> None:
        if result.status is Status.SUCCESS:
            self.print_debug(f"[{job.name}] {result.name} ok in {result.duration:.1f}s")
            return
        self.print_failure(job, result)

    def job_finished(self, job: Job, result: JobResult) -> None:
        cause = f" ({result.cause.value})" if result.cause else ""
        self._emit(f"[{job.name}] STATUS: {result.status.value}{cause}")

    def internal_error(self, job: Job, exc: BaseException) -> None:
        self.print_error("Internal error", f"Job '{job.name}' could not be run")
        self.print_exception(exc)

    def run_finished(self, result: RunResult) -> None:
        self.print_results(result)

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def print_failure(self, job: Job, result: StepResult) -> None:
        """
        Print a failed/cancelled step with the tail of its output.

        Launch errors have no exit code; their OS error is shown instead.
        """
        prefix = "STEP CANCELLED" if result.status is Status.CANCELLED else "STEP FAILED"
        lines = [f"[{job.name}] {prefix}: {result.name}"]
        if result.exit_code is not None:
            lines.append(f"Exit code: {result.exit_code}")
        if result.cause is not None:
            lines.append(f"Cause: {result.cause.value}")
        if result.error:
            lines.append(f"Error: {result.error}")

        for label, captured in (("stdout", result.stdout), ("stderr", result.stderr)):
            if not captured.data:
                continue
            text = captured.text.rstrip("\n").splitlines()
            shown = text if self.debug else text[-self.tail_lines:]
            suffix = " (truncated)" if captured.truncated else ""
            lines.append(f"--- {label}{suffix} ---")
            lines.extend(shown)
        self._emit(*lines)

    def print_results(self, result: RunResult) -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for name, job_result in result.jobs.items():
            lines.append(f"  {name}: {job_result.status.value.upper()} ({job_result.duration:.1f}s)")
            if self.debug:
                for s in job_result.steps:
                    code = "" if s.exit_code is None else f" exit={s.exit_code}"
                    lines.append(f"    - {s.name}: {s.status.value}{code}")
        lines.append(f"RUN: {result.status.value.upper()} in {result.duration:.1f}s")
        self._emit(*lines)

    def print_plan(self, kind: str, ref: str, jobs: list[Job]) -> None:
        """Print which jobs an event selects."""
        if not jobs:
            self._emit(f"No trigger matches {kind} ({ref}); nothing to run.")
            return
        lines = [f"Event {kind} ({ref}) selects {len(jobs)} job(s):"]
        for j in jobs:
            needs = f" (needs: {', '.join(j.needs)})" if j.needs else ""
            lines.append(f"  {j.name}: {j.display_name}, {len(j.steps)} step(s){needs}")
        self._emit(*lines)

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
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
