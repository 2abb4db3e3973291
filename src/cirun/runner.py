# runner.py
from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from .cancel import CancelToken
from .executor import StepExecutor
from .model import Cause, Job, JobResult, Status, StepResult, cause_of
from .sink import NullSink, ResultSink

EnvProvider = Callable[[Job], Mapping[str, str]]


class JobRunner:
    """
    Executes the steps of one job in declared order, fail-fast.

    The first step that does not succeed stops the job; every later step
    is recorded as skipped. Cancellation is checked before each step, so a
    cancelled job never starts a new step.
    """

    def __init__(
        self,
        executor: StepExecutor | None = None,
        *,
        workdir: str | Path = ".",
        sink: ResultSink | None = None,
        env_provider: Optional[EnvProvider] = None,
    ):
        self.executor = executor or StepExecutor()
        self.workdir = Path(workdir)
        self.sink = sink or NullSink()
        self.env_provider = env_provider

    def _env_for(self, job: Job) -> Dict[str, str]:
        env = dict(job.env)
        if self.env_provider is not None:
            env.update(self.env_provider(job))
        return env

    def run(self, job: Job, token: CancelToken | None = None) -> JobResult:
        token = (token or CancelToken()).child()
        started = time.monotonic()
        env = self._env_for(job)

        self.sink.job_started(job)

        results: List[StepResult] = []
        status = Status.SUCCESS
        cause: Cause | None = None

        for step in job.steps:
            # ---- stopped: record the rest as skipped ----
            if status is not Status.SUCCESS:
                results.append(StepResult.skipped(step))
                continue
            if token.cancelled:
                status, cause = Status.CANCELLED, cause_of(token)
                results.append(StepResult.skipped(step))
                continue

            # ---- run ----
            self.sink.step_started(job, step)
            res = self.executor.execute(step, self.workdir, token, env=env)
            self.sink.step_finished(job, res)
            results.append(res)

            if res.status is Status.CANCELLED:
                status, cause = Status.CANCELLED, res.cause
            elif res.status is not Status.SUCCESS:
                status, cause = Status.FAILURE, res.cause

        result = JobResult(
            name=job.name,
            status=status,
            steps=tuple(results),
            duration=time.monotonic() - started,
            cause=cause,
        )
        self.sink.job_finished(job, result)
        return result
