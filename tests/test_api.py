import pytest
from fastapi.testclient import TestClient

from fakes import FakeElement, FakeFrame, FakeOracle, FakePage

from autofill_agent.server import api


class FakeSession:
    def __init__(self, page):
        self.page = page
        self.visited = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def goto(self, url):
        self.visited.append(url)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(api, "_active_run", None)
    page = FakePage(FakeFrame(elements=[FakeElement("input", id="dob", label_for="DOB")]))
    session = FakeSession(page)
    oracle = FakeOracle({"dob": "1990-05-04"})
    api.app.dependency_overrides[api.get_session_factory] = lambda: (lambda: session)
    api.app.dependency_overrides[api.get_oracle_factory] = lambda: (lambda credential: oracle)
    test_client = TestClient(api.app)
    test_client.fake_session = session
    yield test_client
    api.app.dependency_overrides.clear()


def test_list_workflows(client):
    response = client.get("/workflows")
    assert response.status_code == 200
    keys = {item["key"]: item for item in response.json()}
    assert set(keys) == {"debug_scan", "quick_fill", "soap_note"}
    assert keys["soap_note"]["step_count"] == 8


def test_no_current_run(client):
    assert client.get("/runs/current").status_code == 404
    assert client.post("/runs/current/abort").status_code == 404


def test_run_quick_fill(client):
    response = client.post(
        "/runs",
        json={"workflow": "quick_fill", "note": "born 1990-05-04", "url": "https://emr.example.com/encounter"},
    )
    assert response.status_code == 202
    assert response.json()["status"] == "started"

    # TestClient runs background tasks before returning, so the run is done here.
    current = client.get("/runs/current").json()
    assert current["run_status"] == "completed"
    assert current["finished"] is True
    assert current["steps"] == [
        {"ordinal": 1, "action": "ai_fill", "description": "AI: Analyzing and filling form...", "status": "success"}
    ]
    assert any(entry["severity"] == "success" for entry in current["logs"])
    assert client.fake_session.visited == ["https://emr.example.com/encounter"]
    assert client.fake_session.page.main_frame.elements[0].value == "1990-05-04"

    assert client.post("/runs/current/abort").status_code == 409


def test_unknown_workflow(client):
    response = client.post("/runs", json={"workflow": "billing", "note": "x"})
    assert response.status_code == 404


def test_second_run_is_rejected_while_first_is_active(client, monkeypatch):
    workflow = api.get_builtin_workflow("debug_scan")
    monkeypatch.setattr(api, "_active_run", api.ActiveRun(workflow=workflow))

    response = client.post("/runs", json={"workflow": "quick_fill", "note": "x"})
    assert response.status_code == 409

    abort = client.post("/runs/current/abort")
    assert abort.status_code == 200
    assert abort.json() == {"abort_requested": True, "run_status": "starting"}
    assert client.get("/runs/current").json()["aborted"] is True
