"""Tests for the terminal client commands, with the HTTP layer stubbed out."""

import json

import pytest
import requests

from punchclock import cli


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = json.dumps(payload)

    def json(self):
        return self.payload


def fake_server(routes):
    calls = []

    def request(method, url, timeout=None, **kwargs):
        path = url.split("://", 1)[1].split("/", 1)[1]
        calls.append((method, "/" + path, kwargs.get("json")))
        return routes[(method, "/" + path)]

    request.calls = calls
    return request


@pytest.fixture(autouse=True)
def server_url(monkeypatch):
    monkeypatch.setenv("PUNCHCLOCK_URL", "http://127.0.0.1:7788")


def run(argv):
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    return exc.value.code


RUNNING = {
    "status": "running",
    "entry_id": 7,
    "project_id": 1,
    "project_name": "Work",
    "project_color": "#3B82F6",
    "start_time": "2026-01-05T09:00:00+00:00",
    "elapsed": 3900,
}


def test_status_running(monkeypatch, capsys):
    monkeypatch.setattr(requests, "request", fake_server({("GET", "/api/session"): FakeResponse(RUNNING)}))
    assert run(["status"]) == 0
    out = capsys.readouterr().out
    assert "Running" in out
    assert "Work" in out
    assert "1:05" in out


def test_no_command_defaults_to_status(monkeypatch, capsys):
    idle = {"status": "idle", "selected_project_id": None, "elapsed": 0}
    monkeypatch.setattr(requests, "request", fake_server({("GET", "/api/session"): FakeResponse(idle)}))
    assert run([]) == 0
    assert "Idle" in capsys.readouterr().out


def test_start_switches(monkeypatch):
    server = fake_server({("POST", "/api/session/switch"): FakeResponse(RUNNING)})
    monkeypatch.setattr(requests, "request", server)
    assert run(["start", "1"]) == 0
    assert server.calls == [("POST", "/api/session/switch", {"project_id": 1})]


def test_stop_reports_duration(monkeypatch, capsys):
    payload = {"stopped": {"id": 7, "duration": 3900}, "session": {"status": "idle"}}
    monkeypatch.setattr(requests, "request", fake_server({("POST", "/api/session/stop"): FakeResponse(payload)}))
    assert run(["stop"]) == 0
    assert "Stopped" in capsys.readouterr().out


def test_projects_table(monkeypatch, capsys):
    projects = {"projects": [{"id": 1, "name": "Work", "color": "#3B82F6", "created_at": ""}], "count": 1}
    monkeypatch.setattr(requests, "request", fake_server({
        ("GET", "/api/projects"): FakeResponse(projects),
        ("GET", "/api/session"): FakeResponse(RUNNING),
    }))
    assert run(["projects"]) == 0
    assert "Work" in capsys.readouterr().out


def test_api_error_detail(monkeypatch, capsys):
    monkeypatch.setattr(requests, "request", fake_server({
        ("POST", "/api/session/switch"): FakeResponse({"detail": "Project 9 does not exist"}, status_code=409),
    }))
    assert run(["start", "9"]) == 1
    assert "does not exist" in capsys.readouterr().out


def test_server_unreachable(monkeypatch, capsys):
    def refuse(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(requests, "request", refuse)
    assert run(["status"]) == 1
    assert "Cannot reach" in capsys.readouterr().out


def test_projects_marks_running_project(monkeypatch, capsys):
    projects = {"projects": [
        {"id": 1, "name": "Work", "color": "#3B82F6", "created_at": ""},
        {"id": 2, "name": "Personal", "color": "#22C55E", "created_at": ""},
    ], "count": 2}
    server = fake_server({
        ("GET", "/api/projects"): FakeResponse(projects),
        ("GET", "/api/session"): FakeResponse(RUNNING),
    })
    monkeypatch.setattr(requests, "request", server)
    assert run(["projects"]) == 0
    rows = [line for line in capsys.readouterr().out.splitlines() if "Work" in line or "Personal" in line]
    assert "●" in next(line for line in rows if "Work" in line)
    assert "●" not in next(line for line in rows if "Personal" in line)
    assert [path for _, path, _ in server.calls] == ["/api/projects", "/api/session"]
