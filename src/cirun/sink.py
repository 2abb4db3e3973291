# sink.py
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .model import Job, JobResult, Run, RunResult, Step, StepResult


class ResultSink(Protocol):
    """Receives progress and results as a run executes. Called from worker threads."""

    def run_started(self, run: "Run") -> None: ...
    def job_started(self, job: "Job") -> None: ...
    def step_started(self, job: "Job", step: "Step") -> None: ...
    def step_finished(self, job: "Job", result: "StepResult") -> None: ...
    def job_finished(self, job: "Job", result: "JobResult") -> None: ...
    def internal_error(self, job: "Job", exc: BaseException) -> None: ...
    def run_finished(self, result: "RunResult") -> None: ...


class NullSink:
    """Discards everything."""

    def run_started(self, run) -> None:
        pass

    def job_started(self, job) -> None:
        pass

    def step_started(self, job, step) -> None:
        pass

    def step_finished(self, job, result) -> None:
        pass

    def job_finished(self, job, result) -> None:
        pass

    def internal_error(self, job, exc) -> None:
        pass

    def run_finished(self, result) -> None:
        pass
