"""Shared step builders and fakes for the test suite."""
from __future__ import annotations

import os
import sys
import threading
import time

from cirun.dsl import cmd
from cirun.model import JobResult, Status, StepResult

PY = sys.executable


def py(name: str, code: str, **kwargs):
    """A step running `python -c code` with the interpreter running the tests."""
    return cmd(name, [PY, "-c", code], **kwargs)


def ok(name: str = "ok"):
    return py(name, "pass")


def fail(name: str = "fail", code: int = 1):
    return py(name, f"import sys; sys.exit({code})")


def sleeper(name: str = "sleep", seconds: float = 30, **kwargs):
    return py(name, f"import time; time.sleep({seconds})", **kwargs)


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    # an unreaped zombie is as good as gone
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().split(")")[-1].split()[0] != "Z"
    except OSError:
        return True


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingSink:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def _add(self, *event):
        with self._lock:
            self.events.append(event)

    def run_started(self, run):
        self._add("run_started", run.run_id)

    def job_started(self, job):
        self._add("job_started", job.name)

    def step_started(self, job, step):
        self._add("step_started", job.name, step.name)

    def step_finished(self, job, result):
        self._add("step_finished", job.name, result.name, result.status)

    def job_finished(self, job, result):
        self._add("job_finished", job.name, result.status)

    def internal_error(self, job, exc):
        self._add("internal_error", job.name, str(exc))

    def run_finished(self, result):
        self._add("run_finished", result.status)


class FakeRunner:
    """Stands in for JobRunner: `behaviour(job, token)` returns a Status."""

    def __init__(self, behaviour):
        self.behaviour = behaviour
        self.sink = RecordingSink()
        self.started = []
        self._lock = threading.Lock()

    def run(self, job, token=None):
        with self._lock:
            self.started.append(job.name)
        status = self.behaviour(job, token)
        return JobResult(
            name=job.name,
            status=status,
            steps=tuple(StepResult(name=s.name, status=status) for s in job.steps),
        )


