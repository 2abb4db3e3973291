# server/app.py
from __future__ import annotations

import os
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import BaseModel, Field

from cirun.config import EngineConfig
from cirun.engine import execute, prepare
from cirun.executor import StepExecutor
from cirun.loader import DEFAULT_WORKFLOW, load_pipeline
from cirun.model import Event, EventKind, JobResult, Pipeline, Run, RunResult
from cirun.registry import RunRegistry
from cirun.runner import JobRunner
from cirun.scheduler import PipelineScheduler

# -------------------- Schemas --------------------

class EventRequest(BaseModel):
    kind: EventKind
    ref: str = Field(min_length=1)

class EventResponse(BaseModel):
    dispatched: bool
    run_id: Optional[str] = None
    jobs: list[str] = Field(default_factory=list)

class StepResponse(BaseModel):
    name: str
    status: str
    exit_code: Optional[int] = None
    cause: Optional[str] = None
    duration: float = 0.0
    stdout: str = ""
    stderr: str = ""
    truncated: bool = False
    error: Optional[str] = None

class JobResponse(BaseModel):
    name: str
    status: str
    cause: Optional[str] = None
    duration: float = 0.0
    steps: list[StepResponse] = Field(default_factory=list)

class RunResponse(BaseModel):
    run_id: str
    kind: EventKind
    ref: str
    status: str  # running|success|failure|cancelled
    jobs: list[JobResponse] = Field(default_factory=list)
    duration: Optional[float] = None

# -------------------- Serialization --------------------

def _job_response(result: JobResult) -> JobResponse:
    return JobResponse(
        name=result.name,
        status=result.status.value,
        cause=result.cause.value if result.cause else None,
        duration=result.duration,
        steps=[
            StepResponse(
                name=s.name,
                status=s.status.value,
                exit_code=s.exit_code,
                cause=s.cause.value if s.cause else None,
                duration=s.duration,
                stdout=s.stdout.text,
                stderr=s.stderr.text,
                truncated=s.truncated,
                error=s.error,
            )
            for s in result.steps
        ],
    )

def _run_response(run: Run) -> RunResponse:
    results = run.results
    return RunResponse(
        run_id=run.run_id,
        kind=run.event.kind,
        ref=run.event.ref,
        status="running",
        jobs=[_job_response(results[j.name]) for j in run.jobs if j.name in results],
    )

def _result_response(result: RunResult) -> RunResponse:
    return RunResponse(
        run_id=result.run_id,
        kind=result.event.kind,
        ref=result.event.ref,
        status=result.status.value,
        jobs=[_job_response(r) for r in result.jobs.values()],
        duration=result.duration,
    )

# -------------------- App --------------------

def create_app(
    pipeline: Pipeline,
    *,
    config: EngineConfig | None = None,
    scheduler: PipelineScheduler | None = None,
    registry: RunRegistry | None = None,
    workdir: str = ".",
) -> FastAPI:
    """
    Webhook ingestion for one pipeline.

    Runs execute as background tasks on the same scheduler, so all runs
    share its job slots; a newer push to a ref supersedes the active run
    for that ref.
    """
    config = config or EngineConfig.from_env()
    scheduler = scheduler or PipelineScheduler(
        JobRunner(StepExecutor(config), workdir=workdir),
        config=config,
    )
    registry = registry or RunRegistry(supersede=config.supersede, history_size=config.history_size)

    app = FastAPI(title=f"cirun: {pipeline.name}")
    app.state.pipeline = pipeline
    app.state.scheduler = scheduler
    app.state.registry = registry

    @app.post("/events", response_model=EventResponse, status_code=202)
    def receive_event(req: EventRequest, background: BackgroundTasks):
        event = Event.of(req.kind, req.ref)
        run = prepare(event, pipeline)
        if run is None:
            return EventResponse(dispatched=False)

        # register now so the run is visible (and supersedes) before it starts
        registry.register(run)
        background.add_task(execute, run, scheduler, registry, registered=True)
        return EventResponse(dispatched=True, run_id=run.run_id, jobs=[j.name for j in run.jobs])

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str):
        result = registry.result(run_id)
        if result is not None:
            return _result_response(result)
        run = registry.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return _run_response(run)

    @app.post("/runs/{run_id}/cancel")
    def cancel_run(run_id: str):
        if registry.result(run_id) is not None:
            raise HTTPException(status_code=409, detail="Run already finished")
        if registry.get(run_id) is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return {"ok": registry.cancel(run_id)}

    @app.on_event("shutdown")
    def shutdown() -> None:
        registry.cancel_all()

    return app


def create_app_from_env() -> FastAPI:
    """uvicorn --factory entry point: CIRUN_WORKFLOW names the workflow file."""
    pipeline = load_pipeline(os.environ.get("CIRUN_WORKFLOW", DEFAULT_WORKFLOW))
    return create_app(pipeline, workdir=os.environ.get("CIRUN_WORKDIR", "."))
