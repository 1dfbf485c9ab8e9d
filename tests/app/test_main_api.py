import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from app.main import app
from src.deskrelay.core.profile_store import ProfileStore
from src.deskrelay.runtime.service import RuntimeService


@pytest.fixture()
def runtime(profile_store, make_gateway, make_controller, monkeypatch) -> RuntimeService:
    service = RuntimeService(
        profile_store=profile_store,
        gateway=make_gateway(),
        controller=make_controller(),
        config={},
    )
    monkeypatch.setattr("app.main.get_runtime_service", lambda: service)
    return service


@pytest.fixture()
def client(runtime):
    with TestClient(app) as test_client:
        yield test_client


def test_health_reports_started_runtime(client):
    res = client.get("/health")
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["runtime"]["started"] is True
    assert body["runtime"]["last_start_source"] == "app"


def test_profiles_endpoint_is_sanitized(client):
    res = client.get("/api/profiles")
    assert res.status_code == 200
    assert res.json() == [
        {
            "profileName": "Support EU",
            "orgId": "org-1",
            "defaultDepartmentId": "dept-1",
            "fromEmailAddress": "support@example.com",
        }
    ]
    assert "secret-1" not in res.text


def test_profiles_endpoint_load_failure(tmp_path, make_gateway, make_controller, monkeypatch):
    broken = RuntimeService(
        profile_store=ProfileStore.from_file(tmp_path / "missing.json"),
        gateway=make_gateway(),
        controller=make_controller(),
        config={},
    )
    monkeypatch.setattr("app.main.get_runtime_service", lambda: broken)
    with TestClient(app) as test_client:
        res = test_client.get("/api/profiles")
    assert res.status_code == 500
    assert res.json() == {"message": "Could not load profiles."}


def test_index_serves_console_page(client):
    res = client.get("/")
    assert res.status_code == 200
    assert "DeskRelay Console" in res.text
    assert res.headers["cache-control"] == "no-store, max-age=0"


def test_websocket_bulk_run_end_to_end(client):
    with client.websocket_connect("/ws?session=sess_ws") as ws:
        ready = ws.receive_json()
        assert ready["event"] == "sessionReady"
        session_id = ready["data"]["sessionId"]
        assert session_id.startswith("sess_ws-")

        ws.send_json(
            {
                "event": "startBulkCreate",
                "data": {
                    "emails": ["a@example.com", "b@example.com", "c@example.com"],
                    "subject": "Hello",
                    "description": "Body",
                    "delay": 0,
                    "profileName": "Support EU",
                },
            }
        )
        frames = [ws.receive_json() for _ in range(5)]

    assert [frame["event"] for frame in frames] == [
        "bulkStarted",
        "ticketResult",
        "ticketResult",
        "ticketResult",
        "bulkComplete",
    ]
    assert [frame["data"]["ticketNumber"] for frame in frames[1:4]] == ["100", "101", "102"]
    job_id = frames[0]["data"]["jobId"]
    assert job_id.startswith(f"{session_id}_")
    assert frames[4]["data"] == {"jobId": job_id}


def test_websocket_unknown_command(client):
    with client.websocket_connect("/ws") as ws:
        ready = ws.receive_json()
        assert ready["data"]["sessionId"].startswith("sess_")

        ws.send_json({"event": "noSuchThing", "data": {}})
        frame = ws.receive_json()

    assert frame == {"event": "commandError", "data": {"event": "noSuchThing", "message": "Unsupported command: noSuchThing"}}


def test_websocket_check_api_status(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "checkApiStatus", "data": {"selectedProfileName": "Support EU"}})
        frame = ws.receive_json()

    assert frame["event"] == "apiStatusResult"
    assert frame["data"]["success"] is True
    assert "tok-1" not in str(frame)


def test_jobs_endpoint_lists_nothing_when_idle(client):
    res = client.get("/api/jobs")
    assert res.status_code == 200
    assert res.json() == {"ok": True, "jobs": [], "count": 0}


def test_shared_session_label_does_not_share_jobs(client):
    with client.websocket_connect("/ws?session=shared") as keeper:
        keeper_id = keeper.receive_json()["data"]["sessionId"]
        keeper.send_json(
            {
                "event": "startBulkCreate",
                "data": {
                    "emails": ["a@example.com", "b@example.com"],
                    "delay": 5,
                    "profileName": "Support EU",
                    "jobId": "job-keep",
                },
            }
        )
        assert keeper.receive_json()["event"] == "bulkStarted"
        assert keeper.receive_json()["event"] == "ticketResult"

        with client.websocket_connect("/ws?session=shared") as other:
            other_id = other.receive_json()["data"]["sessionId"]

        assert other_id != keeper_id
        assert other_id.startswith("shared-")

        keeper.send_json({"event": "pauseJob", "data": {"jobId": "job-keep"}})
        assert keeper.receive_json() == {"event": "jobStatus", "data": {"jobId": "job-keep", "status": "paused"}}

        keeper.send_json({"event": "endJob", "data": {"jobId": "job-keep"}})
        tail = [keeper.receive_json() for _ in range(2)]

    assert {frame["event"] for frame in tail} == {"jobStatus", "bulkEnded"}
