from __future__ import annotations

import json
from collections.abc import Callable, Iterator

import pytest
from fakes import FakeTransport
from fastapi.testclient import TestClient

from audit_orchestrator.app import signing
from audit_orchestrator.app.agent import OrchestratorAgent
from audit_orchestrator.app.http import HttpResponse
from audit_orchestrator.config.settings import Settings
from audit_orchestrator.main import create_app

SECRET = "s3cret"


@pytest.fixture
def agent(make_agent: Callable[..., OrchestratorAgent]) -> OrchestratorAgent:
    return make_agent(webhook_secret=SECRET)


@pytest.fixture
def client(settings: Settings, agent: OrchestratorAgent) -> Iterator[TestClient]:
    app = create_app(settings_override=settings.model_copy(update={"webhook_secret": SECRET}), agent=agent)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/healthz").status_code == 200


def test_process_request_returns_pipeline_result(client: TestClient) -> None:
    response = client.post("/agent/process", json={"request": {"message": "quarterly report"}})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["analysis"]["type"] == "report"
    assert body["analysis"]["source"] == "heuristic"
    assert client.get("/agent/learning").json()["total_executions"] == 1


def test_mode_and_threshold_routes(client: TestClient) -> None:
    assert client.put("/agent/mode", json={"mode": "manual"}).json() == {"mode": "manual"}
    assert client.put("/agent/mode", json={"mode": "chaos"}).status_code == 400
    assert client.put("/agent/threshold", json={"threshold": 0.8}).json() == {"confidence_threshold": 0.8}
    assert client.put("/agent/threshold", json={"threshold": 3}).status_code == 400
    assert client.get("/agent/status").json()["mode"] == "manual"


def test_project_lifecycle_routes(client: TestClient) -> None:
    started = client.post("/projects/alpha", json={"project_name": "Q3 Review", "client": "ACME"}).json()
    assert started["success"] is True
    project_id = started["project"]["id"]

    assert client.get(f"/projects/{project_id}").json()["status"] == "active"
    assert [item["id"] for item in client.get("/projects/active").json()] == [project_id]
    report = client.post(f"/projects/{project_id}/reports", json={"title": "Interim"}).json()
    assert report["title"] == "Interim"

    finished = client.post(
        "/projects/omega", json={"project_id": project_id, "generate_report": False, "notify_client": False}
    ).json()
    assert finished["project"]["status"] == "completed"
    assert [item["id"] for item in client.get("/projects/completed").json()] == [project_id]
    assert client.get("/projects/metrics").json()["projects_completed"] == 1
    assert len(client.get("/projects/templates").json()["templates"]) == 4

    assert client.get("/projects/PRJ-missing").status_code == 404
    assert client.put(f"/projects/{project_id}/status", json={"status": "active"}).status_code == 409
    unknown = client.post("/projects/omega", json={"project_id": "PRJ-missing"}).json()
    assert unknown["success"] is False


def test_alert_routes(client: TestClient) -> None:
    client.post("/projects/alpha", json={"project_name": "Alerts", "client": "ACME"})

    alerts = client.get("/alerts").json()
    assert len(alerts) == 1
    assert client.put(f"/alerts/{alerts[0]['id']}/read").json()["read"] is True
    assert client.get("/alerts", params={"unread_only": True}).json() == []
    assert client.put("/alerts/read-all").json() == {"updated": 0}
    assert client.put("/alerts/ALT-missing/read").status_code == 404


def test_incoming_webhook_requires_valid_signature(client: TestClient, agent: OrchestratorAgent) -> None:
    body = b'{"event":"agent_command","data":{"command":"pause"}}'

    rejected = client.post("/webhooks/incoming", content=body, headers={"X-Signature": "00" * 32})
    assert rejected.status_code == 401

    accepted = client.post(
        "/webhooks/incoming",
        content=body,
        headers={"X-Signature": signing.sign(body, SECRET), "Content-Type": "application/json"},
    )
    assert accepted.status_code == 200
    assert accepted.json()["result"] == {"action": "command_executed", "command": "pause", "mode": "manual"}
    assert agent.mode == "manual"
    assert agent.webhooks.stats()["webhooks_received"] == 1


def test_incoming_webhook_routes_events(client: TestClient) -> None:
    def post(payload: bytes) -> dict:
        return client.post("/webhooks/incoming", content=payload, headers={"X-Signature": signing.sign(payload, SECRET)}).json()

    assert post(b'{"event":"audit_request","data":{"client":"ACME"}}')["result"]["action"] == "audit_queued"
    assert post(b'{"event":"report_request","data":{}}')["result"]["action"] == "report_queued"
    assert post(b'{"event":"sync_request"}')["result"]["action"] == "sync_initiated"
    assert post(b'{"event":"something_else"}')["result"] == {"action": "event_logged", "event": "something_else"}
    unknown_command = post(b'{"event":"agent_command","data":{"command":"explode"}}')
    assert unknown_command["success"] is False
    assert client.post("/webhooks/incoming", content=b"not json").status_code == 400


def test_webhook_delivery_routes(client: TestClient) -> None:
    sent = client.post("/webhooks/send/notification", json={"data": {"message": "hi"}}).json()
    assert sent["skipped"] is True
    assert client.post("/webhooks/send/nope", json={}).status_code == 404

    route = client.post("/webhooks/route", json={"type": "audit", "priority": "critical", "risk_level": 9}).json()
    assert route["path"] == "A"
    assert route["escalate"] is True

    config = client.get("/webhooks/config").json()
    assert config["security_enabled"] is True
    assert "recent_deliveries" in client.get("/webhooks/stats").json()


def test_tracker_routes_without_token(client: TestClient) -> None:
    assert client.get("/tracker/workspaces").status_code == 503
    assert client.delete("/tracker/cache").json() == {"cleared": True}


def test_channel_check_and_table_sync_routes(client: TestClient) -> None:
    checked = client.post("/webhooks/test/escalation").json()
    assert checked["channel"] == "escalation"
    assert checked["skipped"] is True
    assert client.post("/webhooks/test/nope").status_code == 404

    synced = client.post("/webhooks/table/audits", json={"record": {"id": "A1"}, "operation": "insert"}).json()
    assert synced["channel"] == "table_update"
    assert client.post("/webhooks/table/audits", json={"operation": "truncate"}).status_code == 422


def test_tracker_search_route(
    settings: Settings, make_agent: Callable[..., OrchestratorAgent], fake_transport: FakeTransport
) -> None:
    tasks = {"tasks": [{"id": "T1", "name": "ACME fraud audit"}, {"id": "T2", "name": "Payroll review"}]}
    fake_transport.responder = lambda method, url, body: HttpResponse(status=200, body=json.dumps(tasks))
    agent = make_agent(tracker_api_token="pk_test")
    with TestClient(create_app(settings_override=settings, agent=agent)) as tracker_client:
        found = tracker_client.get("/tracker/lists/L9/tasks/search", params={"q": "fraud"}).json()

    assert [task["id"] for task in found["tasks"]] == ["T1"]
    url = fake_transport.calls[0].url
    assert "/list/L9/task?" in url
    assert "include_closed=true" in url
