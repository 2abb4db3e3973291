from __future__ import annotations

import threading

import pytest

from cirun.cancel import CancelToken
from cirun.dsl import job
from cirun.executor import StepExecutor
from cirun.model import Cause, Status, StepResult
from cirun.runner import JobRunner

from helpers import fail, ok, py, sleeper


@pytest.fixture
def runner(config, sink, tmp_path):
    return JobRunner(StepExecutor(config), workdir=tmp_path, sink=sink)


def test_all_steps_succeed(runner):
    res = runner.run(job("build", ok("a"), ok("b"), ok("c")))

    assert res.status is Status.SUCCESS
    assert [s.status for s in res.steps] == [Status.SUCCESS] * 3
    assert res.cause is None


@pytest.mark.parametrize("k", [1, 2, 3])
def test_failure_at_step_k_skips_the_rest(runner, k):
    steps = [fail(f"s{i}") if i == k else ok(f"s{i}") for i in range(1, 4)]

    res = runner.run(job("j", *steps))

    assert res.status is Status.FAILURE
    assert [s.status for s in res.steps[: k - 1]] == [Status.SUCCESS] * (k - 1)
    assert res.steps[k - 1].status is Status.FAILURE
    assert [s.status for s in res.steps[k:]] == [Status.SKIPPED] * (3 - k)


def test_quality_job_stops_at_clippy(runner):
    quality = job(
        "quality",
        fail("clippy", code=101),
        ok("doc"),
        ok("fmt"),
        title="Code Quality",
    )

    res = runner.run(quality)

    assert res.status is Status.FAILURE
    assert [(s.name, s.status, s.exit_code) for s in res.steps] == [
        ("clippy", Status.FAILURE, 101),
        ("doc", Status.SKIPPED, None),
        ("fmt", Status.SKIPPED, None),
    ]


def test_skipped_steps_never_start(runner, sink, tmp_path):
    marker = tmp_path / "ran"
    runner.run(job("j", fail("first"), py("second", f"open({str(marker)!r}, 'w').close()")))

    assert not marker.exists()
    started = [e for e in sink.events if e[0] == "step_started"]
    assert started == [("step_started", "j", "first")]


def test_cancel_mid_step_cancels_job(runner):
    token = CancelToken()
    threading.Timer(0.2, token.cancel).start()

    res = runner.run(job("j", sleeper("long"), ok("after")), token)

    assert res.status is Status.CANCELLED
    assert res.cause is Cause.CANCELLED
    assert [s.status for s in res.steps] == [Status.CANCELLED, Status.SKIPPED]


def test_cancelled_before_start_runs_nothing(runner, sink):
    token = CancelToken()
    token.cancel()

    res = runner.run(job("j", ok("a"), ok("b")), token)

    assert res.status is Status.CANCELLED
    assert [s.status for s in res.steps] == [Status.SKIPPED, Status.SKIPPED]
    assert not [e for e in sink.events if e[0] == "step_started"]


class CancellingExecutor:
    """Succeeds every step but cancels `token` while the first one is 'running'."""

    def __init__(self, token):
        self.token = token
        self.calls = []

    def execute(self, step, workdir, token, env=None):
        self.calls.append(step.name)
        self.token.cancel()
        return StepResult(name=step.name, status=Status.SUCCESS, exit_code=0)


def test_no_new_step_after_cancellation_observed(sink):
    outer = CancelToken()
    executor = CancellingExecutor(outer)
    runner = JobRunner(executor, sink=sink)

    res = runner.run(job("j", ok("a"), ok("b"), ok("c")), outer)

    assert executor.calls == ["a"]
    assert res.status is Status.CANCELLED
    assert [s.status for s in res.steps] == [Status.SUCCESS, Status.SKIPPED, Status.SKIPPED]


def test_step_timeout_cancels_job_with_timeout_cause(runner):
    res = runner.run(job("j", sleeper("slow", timeout=0.3), ok("next")))

    assert res.status is Status.CANCELLED
    assert res.cause is Cause.TIMEOUT
    assert res.steps[1].status is Status.SKIPPED


def test_launch_error_fails_job(runner):
    res = runner.run(job("j", py("bad cwd", "pass", cwd="missing"), ok("next")))

    assert res.status is Status.FAILURE
    assert res.cause is Cause.LAUNCH_ERROR


def test_env_provider_and_job_env(config, tmp_path):
    runner = JobRunner(
        StepExecutor(config),
        workdir=tmp_path,
        env_provider=lambda j: {"TOKEN": f"secret-for-{j.name}"},
    )
    step = py("show", "import os; print(os.environ['TOKEN'], os.environ['MODE'])")

    res = runner.run(job("deploy", step, env={"MODE": "ci", "TOKEN": "from-job"}))

    assert res.steps[0].stdout.text.split() == ["secret-for-deploy", "ci"]


def test_sink_sees_events_in_order(runner, sink):
    runner.run(job("j", ok("a"), fail("b")))

    assert sink.events == [
        ("job_started", "j"),
        ("step_started", "j", "a"),
        ("step_finished", "j", "a", Status.SUCCESS),
        ("step_started", "j", "b"),
        ("step_finished", "j", "b", Status.FAILURE),
        ("job_finished", "j", Status.FAILURE),
    ]
