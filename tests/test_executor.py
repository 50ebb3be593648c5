from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from fakes import FakeTransport

from audit_orchestrator.app.agent import OrchestratorAgent
from audit_orchestrator.app.http import HttpResponse, HttpStatusError
from audit_orchestrator.app.models import Action

NOTIFY_URL = "https://hooks.example.test/notify"


def _validated(kind: str, **payload: Any) -> Action:
    return Action(kind=kind, payload=payload, validated=True, validation_method="automatic")


def test_unvalidated_actions_never_reach_adapters(
    make_agent: Callable[..., OrchestratorAgent], fake_transport: FakeTransport
) -> None:
    agent = make_agent(tracker_api_token="pk_test", tracker_default_list_id="L1", webhook_urls={"generic": NOTIFY_URL})
    actions = [
        Action(kind="clickup_task", payload={"name": "x"}, validated=False, reason="confidence too low"),
        Action(kind="notification", payload={"message": "x"}, validated=False),
    ]

    results = agent.executor.execute(actions)

    assert [result.status for result in results] == ["skipped", "skipped"]
    assert results[0].detail["reason"] == "confidence too low"
    assert fake_transport.calls == []


def test_auto_approved_action_runs_even_when_not_validated(
    make_agent: Callable[..., OrchestratorAgent], fake_transport: FakeTransport
) -> None:
    agent = make_agent(webhook_urls={"notification": NOTIFY_URL})
    action = Action(kind="notification", payload={"message": "hi"}, validated=False, validation_method="auto_approved")

    results = agent.executor.execute([action])

    assert results[0].status == "completed"
    assert len(fake_transport.calls) == 1


def test_one_failing_action_does_not_stop_the_rest(
    make_agent: Callable[..., OrchestratorAgent], fake_transport: FakeTransport
) -> None:
    def respond(method: str, url: str, body: Any) -> HttpResponse | Exception:
        if "clickup" in url:
            return HttpStatusError(400, "bad list", url)
        return HttpResponse(status=200, body="{}")

    fake_transport.responder = respond
    agent = make_agent(tracker_api_token="pk_test", tracker_default_list_id="L1", webhook_urls={"notification": NOTIFY_URL})

    results = agent.executor.execute(
        [
            _validated("clickup_task", name="Audit", priority=1, tags=["audit"], due_date="2026-11-01T10:00:00+00:00"),
            _validated("notification", message="heads up", channels=["email"]),
        ]
    )

    assert [result.status for result in results] == ["failed", "completed"]
    assert "HTTP 400" in (results[0].error or "")
    assert results[1].detail["channel"] == "notification"


def test_unconfigured_adapters_yield_skipped_results(make_agent: Callable[..., OrchestratorAgent]) -> None:
    agent = make_agent()

    results = agent.executor.execute(
        [
            _validated("clickup_task", name="Audit"),
            _validated("zapier_trigger", channel="audit_result", data={"risk_level": 9}),
            _validated("notification", message="x"),
            _validated("escalation", level="critical", reason="fraud"),
        ]
    )

    assert [result.status for result in results] == ["skipped", "skipped", "skipped", "skipped"]


def test_generation_falls_back_to_template_text(make_agent: Callable[..., OrchestratorAgent]) -> None:
    agent = make_agent()

    result = agent.executor.execute(
        [_validated("ai_generation", content_type="report", data={"title": "Q3 Summary", "summary": "All good"})]
    )[0]

    assert result.status == "completed"
    assert result.detail["source"] == "fallback"
    assert "# Q3 Summary" in result.detail["content"]
    assert result.detail["word_count"] > 0


def test_escalation_creates_urgent_task_and_sends_webhook(
    make_agent: Callable[..., OrchestratorAgent], fake_transport: FakeTransport
) -> None:
    fake_transport.responder = lambda method, url, body: HttpResponse(status=200, body=json.dumps({"id": "T5"}))
    agent = make_agent(
        tracker_api_token="pk_test",
        tracker_default_list_id="L1",
        webhook_urls={"escalation": "https://hooks.example.test/escalation"},
    )

    result = agent.executor.execute([_validated("escalation", level="critical", reason="fraud")])[0]

    assert result.status == "completed"
    assert result.detail["task_id"] == "T5"
    task_call, hook_call = fake_transport.calls
    assert task_call.json()["priority"] == 1
    assert hook_call.json()["metadata"]["priority"] == "critical"


def test_workflow_actions_drive_the_lifecycle(make_agent: Callable[..., OrchestratorAgent]) -> None:
    agent = make_agent()

    started = agent.executor.execute(
        [_validated("workflow_alpha", project_name="Q3 Review", client="ACME", project_type="compliance")]
    )[0]
    finished = agent.executor.execute(
        [_validated("workflow_omega", project_name="Q3 Review", generate_report=False, notify_client=False)]
    )[0]
    missing = agent.executor.execute([_validated("workflow_omega", project_name="Unknown")])[0]

    assert started.status == "completed"
    assert started.detail["status"] == "active"
    assert finished.status == "completed"
    assert finished.detail["status"] == "completed"
    assert missing.status == "failed"
