# engine.py
from __future__ import annotations

from typing import Optional

from .model import Event, Pipeline, Run, RunResult
from .registry import RunRegistry
from .scheduler import PipelineScheduler
from .trigger import select_jobs


def prepare(event: Event, pipeline: Pipeline) -> Optional[Run]:
    """Create the Run an event dispatches, or None when no trigger fires."""
    jobs = select_jobs(event, pipeline)
    if not jobs:
        return None
    return Run.create(event, jobs, pipeline=pipeline.name)


def execute(
    run: Run,
    scheduler: PipelineScheduler,
    registry: RunRegistry | None = None,
    *,
    registered: bool = False,
) -> RunResult:
    """
    Schedule a prepared run, keeping the registry in sync on every exit path.

    Pass `registered=True` when the caller already registered the run; a
    second registration could take the ref back from a newer run.
    """
    if registry is not None and not registered:
        registry.register(run)
    try:
        result = scheduler.schedule(run)
    except BaseException:
        # KeyboardInterrupt or a broken collaborator: stop children, forget the run
        run.cancel()
        if registry is not None:
            registry.discard(run)
        raise
    if registry is not None:
        registry.complete(run, result)
    return result


def dispatch(
    event: Event,
    pipeline: Pipeline,
    scheduler: PipelineScheduler,
    registry: RunRegistry | None = None,
) -> Optional[RunResult]:
    """
    Trigger Evaluator -> Run -> Scheduler.

    Returns None when the event does not trigger the pipeline.
    """
    run = prepare(event, pipeline)
    if run is None:
        return None
    return execute(run, scheduler, registry)
