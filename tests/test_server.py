from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from cirun.config import EngineConfig
from cirun.dsl import job, on_pull_request, on_push, pipeline
from cirun.model import Event, Run
from cirun.registry import RunRegistry
from cirun.server.app import create_app, create_app_from_env

from helpers import fail, ok, py


@pytest.fixture
def registry():
    return RunRegistry()


@pytest.fixture
def client(registry, tmp_path):
    ci = pipeline(
        "CI",
        job("test", py("Check", "print('checked')")),
        job("quality", fail("Clippy", 101), ok("Check Format")),
        on=[on_pull_request(), on_push("main")],
    )
    config = EngineConfig(max_concurrency=2, poll_interval=0.02, kill_grace=1.0)
    app = create_app(ci, config=config, registry=registry, workdir=str(tmp_path))
    return TestClient(app)


def test_event_dispatches_run(client):
    resp = client.post("/events", json={"kind": "push", "ref": "main"})

    assert resp.status_code == 202
    body = resp.json()
    assert body["dispatched"] is True
    assert body["jobs"] == ["test", "quality"]

    # background tasks have finished by the time TestClient returns
    run = client.get(f"/runs/{body['run_id']}").json()
    assert run["status"] == "failure"
    jobs = {j["name"]: j for j in run["jobs"]}
    assert jobs["test"]["status"] == "success"
    assert jobs["test"]["steps"][0]["stdout"].strip() == "checked"
    assert [(s["name"], s["status"], s["exit_code"]) for s in jobs["quality"]["steps"]] == [
        ("Clippy", "failure", 101),
        ("Check Format", "skipped", None),
    ]


def test_untriggered_event(client):
    resp = client.post("/events", json={"kind": "push", "ref": "feature/x"})

    assert resp.status_code == 202
    assert resp.json() == {"dispatched": False, "run_id": None, "jobs": []}


def test_invalid_event_kind(client):
    resp = client.post("/events", json={"kind": "tag", "ref": "v1"})
    assert resp.status_code == 422


def test_unknown_run(client):
    assert client.get("/runs/nope").status_code == 404
    assert client.post("/runs/nope/cancel").status_code == 404


def test_cancel_active_run(client, registry):
    run = Run.create(Event.of("push", "main"), [job("a", ok())], pipeline="CI")
    registry.register(run)

    status = client.get(f"/runs/{run.run_id}").json()
    resp = client.post(f"/runs/{run.run_id}/cancel")

    assert status["status"] == "running"
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert run.token.cancelled


def test_cancel_finished_run_conflicts(client):
    run_id = client.post("/events", json={"kind": "pull_request", "ref": "x"}).json()["run_id"]

    assert client.post(f"/runs/{run_id}/cancel").status_code == 409


def test_consecutive_pushes_each_run_to_completion(client, registry):
    first = client.post("/events", json={"kind": "push", "ref": "main"}).json()["run_id"]
    second = client.post("/events", json={"kind": "push", "ref": "main"}).json()["run_id"]

    assert first != second
    for run_id in (first, second):
        run = client.get(f"/runs/{run_id}").json()
        assert run["status"] == "failure"
        assert {j["name"]: j["status"] for j in run["jobs"]} == {"test": "success", "quality": "failure"}
    assert registry.active() == []


def test_event_supersedes_registered_run(client, registry):
    stale = Run.create(Event.of("push", "main"), [job("a", ok())], pipeline="CI")
    registry.register(stale)

    run_id = client.post("/events", json={"kind": "push", "ref": "main"}).json()["run_id"]

    assert stale.token.cause == "superseded"
    assert client.get(f"/runs/{run_id}").json()["status"] == "failure"


def test_app_from_env(tmp_path, monkeypatch):
    wf = tmp_path / "ci_workflow.py"
    wf.write_text(
        "import sys\n"
        "from cirun.dsl import cmd, job, on_push, pipeline\n"
        "PIPELINE = pipeline('CI', job('test', cmd('Check', [sys.executable, '-c', 'pass'])), on=[on_push('main')])\n"
    )
    monkeypatch.setenv("CIRUN_WORKFLOW", str(wf))
    monkeypatch.setenv("CIRUN_WORKDIR", str(tmp_path))

    client = TestClient(create_app_from_env())
    run_id = client.post("/events", json={"kind": "push", "ref": "main"}).json()["run_id"]

    assert client.app.state.pipeline.name == "CI"
    assert client.get(f"/runs/{run_id}").json()["status"] == "success"
