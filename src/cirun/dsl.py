# dsl.py
from __future__ import annotations

import shlex
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .model import EventKind, Job, Pipeline, Step, TriggerRule


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def cmd(
    name: str,
    command: str | Sequence[str],
    *,
    args: str | Sequence[str] = (),
    cwd: str | None = None,
    timeout: float | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Step:
    """
    Create a step that runs an argv directly (no shell).

    Strings are split with shlex, so `cmd("Check", "cargo check", args="--all-features")`
    runs ["cargo", "check", "--all-features"].
    """
    argv = shlex.split(command) if isinstance(command, str) else list(command)
    extra = shlex.split(args) if isinstance(args, str) else list(args)
    return Step(
        name=name,
        command=tuple(argv),
        args=tuple(extra),
        cwd=cwd,
        timeout=timeout,
        env=dict(env or {}),
    )


def sh(name: str, script: str, *, cwd: str | None = None, timeout: float | None = None) -> Step:
    """Create a shell step (`sh -c script`), for pipes, `||` and friends."""
    return Step(name=name, command=("sh", "-c", script), cwd=cwd, timeout=timeout)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    title: str | None = None,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    events: Optional[Iterable[str | EventKind]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=tuple(steps_final),
        title=title,
        needs=tuple(needs or ()),
        env={k: str(v) for k, v in (env or {}).items()},
        events=frozenset(EventKind(e) for e in events) if events is not None else None,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._title: str | None = None
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._events: Optional[list[str]] = None

    def titled(self, title: str):
        self._title = title
        return self

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def step(self, name: str, command: str | Sequence[str], **kwargs):
        self._steps.append(cmd(name, command, **kwargs))
        return self

    def shell(self, name: str, script: str, **kwargs):
        self._steps.append(sh(name, script, **kwargs))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def only_on(self, *events: str):
        self._events = list(events)
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        return job(
            self.name,
            steps_list=self._steps,
            title=self._title,
            needs=self._needs,
            env=self._env,
            events=self._events,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Variants become sequential fail-fast steps of one job with `steps()`,
    or independent jobs with `jobs()`:

        matrix("features", ["--no-default-features", "", "--all-features"]).steps(
            lambda v: cmd(f"Check {v or 'default'}", "cargo check", args=v)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def steps(self, builder: Callable[[Any], Step]) -> List[Step]:
        return [builder(v) for v in self.values]

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Triggers + pipeline
# ---------------------------------------------------------------------

def on_push(*branches: str) -> TriggerRule:
    """Push trigger; no branches means any branch."""
    return TriggerRule(EventKind.PUSH, frozenset(branches) if branches else None)


def on_pull_request(*branches: str) -> TriggerRule:
    return TriggerRule(EventKind.PULL_REQUEST, frozenset(branches) if branches else None)


def pipeline(name: str, *jobs: Job, on: Iterable[TriggerRule]) -> Pipeline:
    """
    Pipeline definition helper for workflow files:

        def workflow():
            return pipeline(
                "CI",
                job(...),
                job(...),
                on=[on_pull_request(), on_push("main")],
            )
    """
    return Pipeline(name=name, triggers=tuple(on), jobs=tuple(jobs))
