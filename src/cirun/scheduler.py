# scheduler.py
from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Set

from .cancel import CancelToken
from .config import EngineConfig
from .dag import build_dag
from .executor import StepExecutor
from .model import Cause, Job, JobResult, Run, RunResult, Status, aggregate_status, cause_of
from .runner import JobRunner
from .sink import NullSink, ResultSink


class PipelineScheduler:
    """
    Runs every job of a Run, concurrently where `needs` allows.

    Admission is bounded by a semaphore owned by the scheduler, so several
    runs executed through the same scheduler share `max_concurrency` job
    slots between them. One job failing does not cancel its siblings unless
    `fail_fast` is configured.
    """

    def __init__(
        self,
        runner: JobRunner | None = None,
        *,
        config: EngineConfig | None = None,
        sink: ResultSink | None = None,
    ):
        self.config = config or EngineConfig()
        self.sink = sink or (runner.sink if runner is not None else NullSink())
        self.runner = runner or JobRunner(StepExecutor(self.config), sink=self.sink)
        self._slots = threading.BoundedSemaphore(self.config.max_concurrency)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _acquire(self, token: CancelToken) -> bool:
        while not token.cancelled:
            if self._slots.acquire(timeout=self.config.poll_interval):
                return True
        return False

    def _run_job(self, run: Run, job: Job, token: CancelToken) -> JobResult:
        if not self._acquire(token):
            result = JobResult.not_started(job, Status.CANCELLED, cause_of(token))
            run.record(result)
            self.sink.job_finished(job, result)
            return result
        try:
            result = self.runner.run(job, token)
            run.record(result)
        finally:
            self._slots.release()
        return result

    def _collect(self, run: Run, job: Job, fut: Future) -> Status:
        try:
            return fut.result().status
        except Exception as e:
            # a collaborator (env provider, sink) blew up; the job counts as failed
            if job.name not in run.results:
                run.record(JobResult.not_started(job, Status.FAILURE, Cause.INTERNAL_ERROR))
            self.sink.internal_error(job, e)
            return Status.FAILURE

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def schedule(self, run: Run) -> RunResult:
        started = time.monotonic()
        self.sink.run_started(run)

        by_name: Dict[str, Job] = {j.name: j for j in run.jobs}
        adj, indeg = build_dag(run.jobs)

        # job tokens hang off this one so fail-fast can stop siblings
        # without marking the run itself as cancelled
        jobs_token = run.token.child()

        ready: List[str] = [j.name for j in run.jobs if indeg[j.name] == 0]
        in_flight: Dict[Future, str] = {}
        settled: Set[str] = set()

        def skip(name: str) -> None:
            if name in settled:
                return
            settled.add(name)
            if run.token.cancelled:
                result = JobResult.not_started(by_name[name], Status.CANCELLED, cause_of(run.token))
            else:
                result = JobResult.not_started(by_name[name], Status.SKIPPED, Cause.DEPENDENCY_FAILED)
            run.record(result)
            self.sink.job_finished(by_name[name], result)
            for nxt in sorted(adj[name]):
                skip(nxt)

        workers = min(len(run.jobs), self.config.max_concurrency)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"cirun-{run.run_id[:8]}") as pool:
            try:
                while ready or in_flight:
                    # schedule all currently ready
                    while ready:
                        name = ready.pop(0)
                        fut = pool.submit(self._run_job, run, by_name[name], jobs_token)
                        in_flight[fut] = name

                    if not in_flight:
                        break

                    done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                    for fut in done:
                        name = in_flight.pop(fut)
                        settled.add(name)
                        status = self._collect(run, by_name[name], fut)

                        if status is not Status.SUCCESS and self.config.fail_fast:
                            jobs_token.cancel(Cause.CANCELLED.value)

                        # unlock dependents only on success
                        for nxt in sorted(adj[name]):
                            if status is Status.SUCCESS:
                                indeg[nxt] -= 1
                                if indeg[nxt] == 0 and nxt not in settled:
                                    ready.append(nxt)
                            else:
                                skip(nxt)
            except BaseException:
                # interrupted: cancel the run so the pool shutdown does not wait on live steps
                run.cancel()
                raise

        results = run.results
        cancelled = run.token.cancelled
        result = RunResult(
            run_id=run.run_id,
            event=run.event,
            status=aggregate_status(results.values(), cancelled=cancelled),
            jobs={j.name: results[j.name] for j in run.jobs},
            duration=time.monotonic() - started,
            cause=cause_of(run.token) if cancelled else None,
        )
        self.sink.run_finished(result)
        return result
