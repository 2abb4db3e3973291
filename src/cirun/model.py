# model.py
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .cancel import CancelToken
from .errors import PipelineError


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


class Status(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class Cause(str, Enum):
    """Why a step/job did not succeed."""
    LAUNCH_ERROR = "launch_error"
    NONZERO_EXIT = "nonzero_exit"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    SUPERSEDED = "superseded"
    DEPENDENCY_FAILED = "dependency_failed"
    INTERNAL_ERROR = "internal_error"


def cause_of(token: CancelToken) -> Cause:
    """Map a cancelled token's cause string onto `Cause`."""
    try:
        return Cause(token.cause)
    except ValueError:
        return Cause.CANCELLED


# ----------------------------------------------------------------------
# Definitions (loaded once per pipeline document, read-only afterwards)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """A triggering event delivered by the ingestion layer."""
    kind: EventKind
    ref: str

    @classmethod
    def of(cls, kind: str | EventKind, ref: str) -> Event:
        if ref.startswith("refs/heads/"):
            ref = ref[len("refs/heads/"):]
        return cls(kind=EventKind(kind), ref=ref)


@dataclass(frozen=True)
class TriggerRule:
    """Event kind x optional branch filter. `branches=None` matches any ref."""
    event: EventKind
    branches: Optional[frozenset[str]] = None


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    command: Tuple[str, ...]
    cwd: str | None = None
    args: Tuple[str, ...] = ()
    timeout: float | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.command:
            raise PipelineError(f"Step '{self.name}' has an empty command")

    @property
    def argv(self) -> List[str]:
        return [*self.command, *self.args]


@dataclass(frozen=True)
class Job:
    """
    A CI job: an ordered sequence of steps.

    `name` is the key used by `needs` and in results, `title` is the
    display name. Jobs are independent of one another unless `needs`
    says otherwise.
    """
    name: str
    steps: Tuple[Step, ...]
    title: str | None = None
    needs: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    events: Optional[frozenset[EventKind]] = None

    def __post_init__(self) -> None:
        if not self.steps:
            raise PipelineError(f"Job '{self.name}' has no steps")

    @property
    def display_name(self) -> str:
        return self.title or self.name


@dataclass(frozen=True)
class Pipeline:
    """Trigger rules plus the jobs they dispatch. Validated on construction."""
    name: str
    triggers: Tuple[TriggerRule, ...]
    jobs: Tuple[Job, ...]

    def __post_init__(self) -> None:
        from .dag import build_dag, check_acyclic

        check_acyclic(*build_dag(self.jobs))

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CapturedOutput:
    data: bytes = b""
    truncated: bool = False

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StepResult:
    name: str
    status: Status
    exit_code: int | None = None
    cause: Cause | None = None
    stdout: CapturedOutput = field(default_factory=CapturedOutput)
    stderr: CapturedOutput = field(default_factory=CapturedOutput)
    duration: float = 0.0
    error: str | None = None

    @property
    def truncated(self) -> bool:
        return self.stdout.truncated or self.stderr.truncated

    @classmethod
    def skipped(cls, step: Step) -> StepResult:
        return cls(name=step.name, status=Status.SKIPPED)


@dataclass(frozen=True)
class JobResult:
    name: str
    status: Status
    steps: Tuple[StepResult, ...]
    duration: float = 0.0
    cause: Cause | None = None

    @classmethod
    def not_started(cls, job: Job, status: Status, cause: Cause | None) -> JobResult:
        return cls(
            name=job.name,
            status=status,
            steps=tuple(StepResult.skipped(s) for s in job.steps),
            cause=cause,
        )


def aggregate_status(results: Iterable[JobResult], cancelled: bool = False) -> Status:
    """Run verdict: Cancelled wins when the run was cancelled externally,
    otherwise Success iff every job succeeded."""
    if cancelled:
        return Status.CANCELLED
    statuses = [r.status for r in results]
    if statuses and all(s is Status.SUCCESS for s in statuses):
        return Status.SUCCESS
    return Status.FAILURE


@dataclass(frozen=True)
class RunResult:
    run_id: str
    event: Event
    status: Status
    jobs: Dict[str, JobResult]
    duration: float = 0.0
    cause: Cause | None = None

    @property
    def ok(self) -> bool:
        return self.status is Status.SUCCESS


class Run:
    """
    One execution of a pipeline against one event.

    Results are written only through `record()`; everything else about a
    run is fixed at creation.
    """

    def __init__(
        self,
        event: Event,
        jobs: Iterable[Job],
        *,
        pipeline: str = "",
        run_id: str | None = None,
        token: CancelToken | None = None,
    ):
        self.jobs: Tuple[Job, ...] = tuple(jobs)
        if not self.jobs:
            raise PipelineError("Cannot create a run without jobs", {"pipeline": pipeline, "ref": event.ref})
        self.run_id = run_id or uuid.uuid4().hex
        self.event = event
        self.pipeline = pipeline
        self.token = token or CancelToken()
        self._results: Dict[str, JobResult] = {}
        self._lock = threading.Lock()

    @classmethod
    def create(cls, event: Event, jobs: Iterable[Job], pipeline: str = "") -> Run:
        return cls(event, jobs, pipeline=pipeline)

    def record(self, result: JobResult) -> None:
        with self._lock:
            if result.name in self._results:
                raise PipelineError(f"Result for job '{result.name}' recorded twice", {"run_id": self.run_id})
            self._results[result.name] = result

    @property
    def results(self) -> Dict[str, JobResult]:
        with self._lock:
            return dict(self._results)

    @property
    def done(self) -> bool:
        with self._lock:
            return len(self._results) == len(self.jobs)

    def cancel(self, cause: str = Cause.CANCELLED.value) -> bool:
        return self.token.cancel(cause)

    def __repr__(self) -> str:
        return f"<Run {self.run_id[:12]} {self.event.kind.value}:{self.event.ref} jobs={len(self.jobs)}>"
