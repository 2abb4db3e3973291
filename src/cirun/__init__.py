from .cancel import CancelToken
from .config import EngineConfig
from .dsl import build, cmd, job, matrix, on_pull_request, on_push, pipeline, sh
from .engine import dispatch
from .executor import StepExecutor
from .model import (
    Cause,
    Event,
    EventKind,
    Job,
    JobResult,
    Pipeline,
    Run,
    RunResult,
    Status,
    Step,
    StepResult,
    TriggerRule,
)
from .registry import RunRegistry
from .runner import JobRunner
from .scheduler import PipelineScheduler
from .trigger import select_jobs, should_run

__all__ = [
    "CancelToken", "EngineConfig",
    "build", "cmd", "job", "matrix", "on_pull_request", "on_push", "pipeline", "sh",
    "dispatch", "StepExecutor", "JobRunner", "PipelineScheduler", "RunRegistry",
    "Cause", "Event", "EventKind", "Job", "JobResult", "Pipeline", "Run", "RunResult",
    "Status", "Step", "StepResult", "TriggerRule",
    "select_jobs", "should_run",
]
