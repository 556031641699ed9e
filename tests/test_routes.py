import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.routes import attendance, security
from conftest import CLASSROOM


@pytest.fixture
def client(guard):
    app = FastAPI()
    app.include_router(attendance.router)
    app.include_router(security.router)
    app.state.guard = guard
    with TestClient(app) as test_client:
        yield test_client


def submission(code, roll="R001", session_id="s1", device="dev-a"):
    return {
        "roll_number": roll,
        "code": code,
        "session_id": session_id,
        "device_fingerprint": device,
        "network_identity": "10.0.0.1",
        "browser_fingerprint": "br-a",
        "geo_location": CLASSROOM.model_dump(),
    }


def request_code(client, roll="R001", session_id="s1"):
    response = client.post("/attendance/request-code", json={"session_id": session_id, "roll_number": roll})
    assert response.status_code == 200
    return response.json()["code"]


def test_request_code_and_submit(client):
    code = request_code(client)
    assert request_code(client) == code

    response = client.post("/attendance/submit", json=submission(code))
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["security_score"] == 100
    assert body["flags"] == []

    listed = client.get("/attendance/session/s1").json()
    assert [r["id"] for r in listed] == [body["attendance_id"]]
    assert listed[0]["device_fingerprint"] == "dev-a..."

    history = client.get("/attendance/history/R001").json()
    assert history[0]["session_id"] == "s1"


def test_rejections_map_to_status_codes(client):
    request_code(client)
    response = client.post("/attendance/submit", json=submission("000000"))
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid-code"

    response = client.post("/attendance/request-code", json={"session_id": "done", "roll_number": "R001"})
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "session-not-active"

    response = client.post("/attendance/request-code", json={"session_id": "s1", "roll_number": "R999"})
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "student-not-found"

    assert client.get("/attendance/history/R999").status_code == 404


def test_duplicate_is_conflict(client):
    client.post("/attendance/submit", json=submission(request_code(client)))
    response = client.post("/attendance/submit", json=submission(request_code(client)))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "duplicate-submission"


def test_risk_block_is_forbidden(client, clock):
    client.post("/attendance/submit", json=submission(request_code(client)))
    clock.advance(seconds=60)
    response = client.post("/attendance/submit", json=submission(request_code(client, roll="R002"), roll="R002"))
    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["code"] == "risk-blocked"
    assert "device-shared" in detail["flags"]
    assert detail["retryable"] is False


def test_alerts_and_resolve(client):
    request_code(client)
    client.post("/attendance/submit", json=submission("000000"))

    alerts = client.get("/security/alerts").json()
    assert len(alerts) == 1
    assert alerts[0]["type"] == "failed_attempt"

    response = client.put(f"/security/alerts/{alerts[0]['id']}/resolve", json={"resolution": "Typo"})
    assert response.status_code == 200
    assert response.json()["alert"]["resolved"] is True

    assert client.get("/security/alerts", params={"resolved": "false"}).json() == []
    assert client.put("/security/alerts/missing/resolve").status_code == 404


def test_block_and_unblock_device(client):
    response = client.post("/security/device/block", json={"identity": "dev-z", "reason": "Lost phone"})
    assert response.status_code == 200
    assert response.json()["blocked"] is True

    blocked = client.get("/security/blocked").json()
    assert blocked[0]["kind"] == "device"
    assert blocked[0]["reason"] == "Lost phone"

    client.post("/security/device/unblock", json={"identity": "dev-z"})
    assert client.get("/security/blocked").json() == []

    assert client.post("/security/student/block", json={"identity": "x"}).status_code == 400
    assert client.post("/security/device/ban", json={"identity": "x"}).status_code == 400


def test_blocked_device_cannot_submit(client):
    client.post("/security/device/block", json={"identity": "dev-a"})
    response = client.post("/attendance/submit", json=submission(request_code(client)))
    assert response.status_code == 403
    assert response.json()["detail"]["flags"][0] == "device-blocked"


def test_metrics(client, clock):
    client.post("/attendance/submit", json=submission(request_code(client)))
    clock.advance(seconds=60)
    client.post("/attendance/submit", json=submission(request_code(client, roll="R002"), roll="R002"))

    metrics = client.get("/security/metrics", params={"timeframe": "1h"}).json()
    assert metrics["total_attempts"] == 2
    assert metrics["successful_attempts"] == 1
    assert metrics["blocked_attempts"] == 1
    assert metrics["average_security_score"] == 75
    assert metrics["risk_distribution"] == {"low": 1, "medium": 0, "high": 1, "critical": 0}
    assert len(metrics["timeline"]) == 1

    assert client.get("/security/metrics", params={"timeframe": "2y"}).status_code == 400


def test_metrics_count_unscored_attempts(client):
    request_code(client)
    client.post("/attendance/submit", json=submission("000000"))

    metrics = client.get("/security/metrics", params={"timeframe": "1h"}).json()
    assert metrics["total_attempts"] == 1
    assert metrics["successful_attempts"] == 0
    assert metrics["average_security_score"] == 0
    assert sum(metrics["risk_distribution"].values()) == 0
