# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
from pathlib import Path

import click

from cirun.config import EngineConfig
from cirun.engine import execute, prepare
from cirun.errors import CirunError
from cirun.executor import StepExecutor
from cirun.git_facts.git import current_branch, repository_name
from cirun.loader import DEFAULT_WORKFLOW, find_workflow_files, load_pipeline
from cirun.model import Event, EventKind, Status
from cirun.registry import RunRegistry
from cirun.runner import JobRunner
from cirun.scheduler import PipelineScheduler
from cirun.trigger import select_jobs
from cirun.ui.console import Console, get_console, set_console

EXIT_CODES = {
    Status.SUCCESS: 0,
    Status.FAILURE: 1,
    Status.CANCELLED: 2,
}


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  cirun run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}",
        )
        sys.exit(1)

    if len(workflow_files) > 1 and workflow_files[0].name != DEFAULT_WORKFLOW:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  cirun run --workflow ci_workflow.py",
        )
        sys.exit(1)

    return workflow_files[0]


def resolve_event(kind: str, ref: str | None) -> Event:
    """Build the event; the ref defaults to the checked-out git branch."""
    console = get_console()
    if not ref:
        try:
            ref = current_branch()
            console.print_debug(f"Using git ref: {ref}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "No --ref specified and the current git branch is unknown.",
                suggestion="Please specify --ref explicitly:\n  cirun run --ref main",
            )
            sys.exit(1)
    return Event.of(kind, ref)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.pass_context
def cli(ctx, debug):
    """cirun: run CI pipelines locally, jobs in parallel, steps fail-fast."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


event_option = click.option(
    "--event",
    "event_kind",
    type=click.Choice([k.value for k in EventKind]),
    default=EventKind.PUSH.value,
    show_default=True,
    help="Event kind to evaluate triggers against",
)
ref_option = click.option("--ref", default=None, help="Branch name (defaults to the current git branch)")
workflow_option = click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
)


@cli.command()
@workflow_option
@event_option
@ref_option
@click.option("--workers", default=None, type=int, help="Maximum number of jobs running at once")
@click.option("--max-output", default=None, type=int, help="Captured bytes kept per step stream")
@click.option("--step-timeout", default=None, type=float, help="Default per-step timeout in seconds")
@click.option("--kill-grace", default=None, type=float, help="Seconds between SIGTERM and SIGKILL on cancel")
@click.option("--fail-fast/--no-fail-fast", default=None, help="Cancel sibling jobs after the first failed job")
@click.option("--workdir", default=".", type=click.Path(file_okay=False), help="Directory steps run in")
@click.pass_context
def run(ctx, workflow, event_kind, ref, workers, max_output, step_timeout, kill_grace, fail_fast, workdir):
    """Evaluate triggers for an event and run the selected jobs."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        config = EngineConfig.from_env().override(
            max_concurrency=workers,
            max_output_bytes=max_output,
            step_timeout=step_timeout,
            kill_grace=kill_grace,
            fail_fast=fail_fast,
        )
        pipeline = load_pipeline(workflow_path)
        event = resolve_event(event_kind, ref)

        console.print_debug(f"Repository: {repository_name()}")
        console.print_debug(f"Workflow: {workflow_path.name} ({pipeline.name})")

        prepared = prepare(event, pipeline)
        if prepared is None:
            console.print_plan(event.kind.value, event.ref, [])
            sys.exit(0)

        registry = RunRegistry(supersede=config.supersede, history_size=config.history_size)
        runner = JobRunner(StepExecutor(config), workdir=workdir, sink=console)
        scheduler = PipelineScheduler(runner, config=config, sink=console)

        # SIGTERM (e.g. from a supervisor) cancels every active run with cause "cancelled"
        previous = signal.signal(signal.SIGTERM, lambda signum, frame: registry.cancel_all())
        try:
            result = execute(prepared, scheduler, registry)
        finally:
            signal.signal(signal.SIGTERM, previous)
        sys.exit(EXIT_CODES[result.status])

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except CirunError as e:
        console.print_error("Invalid workflow", f"Could not use {workflow_path}", details=str(e).splitlines())
        sys.exit(1)
    except ValueError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(1)


@cli.command()
@workflow_option
@event_option
@ref_option
def check(workflow, event_kind, ref):
    """Only evaluate triggers: print the jobs an event would run."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        pipeline = load_pipeline(workflow_path)
    except CirunError as e:
        console.print_error("Invalid workflow", f"Could not use {workflow_path}", details=str(e).splitlines())
        sys.exit(1)

    event = resolve_event(event_kind, ref)
    console.print_plan(event.kind.value, event.ref, select_jobs(event, pipeline))


if __name__ == "__main__":
    cli()
