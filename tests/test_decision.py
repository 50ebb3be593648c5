from __future__ import annotations

from audit_orchestrator.app.decision import DecisionEngine, determine_route, map_priority
from audit_orchestrator.app.models import Analysis


def test_critical_security_breach_audit_emits_task_trigger_notification_escalation() -> None:
    analysis = Analysis(type="audit", priority="critical", category="security_breach", risk_level=9)

    actions = DecisionEngine().decide(analysis)

    assert [action.kind for action in actions] == ["clickup_task", "zapier_trigger", "notification", "escalation"]
    assert actions[0].payload["priority"] == 1
    assert actions[1].payload["channel"] == "audit_result"
    assert actions[3].payload["level"] == "critical"
    assert all(action.validated is False for action in actions)


def test_priority_mapping() -> None:
    assert [map_priority(p) for p in ("critical", "urgent", "high", "medium", "low", "unknown")] == [1, 1, 2, 3, 4, 3]


def test_escalation_level_depends_on_risk() -> None:
    high = DecisionEngine().decide(Analysis(type="consultation", category="operational", risk_level=8))
    assert [action.kind for action in high] == ["escalation"]
    assert high[0].payload["level"] == "high"

    compliance = DecisionEngine().decide(Analysis(type="consultation", category="compliance", risk_level=2))
    assert [action.kind for action in compliance] == ["escalation"]


def test_report_and_workflow_rules() -> None:
    actions = DecisionEngine().decide(
        Analysis(type="report", priority="low", suggested_workflow="alpha", entities={"client": "ACME", "project": "Q3"})
    )

    assert [action.kind for action in actions] == ["workflow_alpha", "ai_generation"]
    assert actions[0].payload["project_name"] == "Q3"
    assert actions[0].payload["client"] == "ACME"

    omega = DecisionEngine().decide(Analysis(type="report", priority="low", suggested_workflow="omega"))
    assert omega[0].kind == "workflow_omega"
    assert omega[0].payload["notify_client"] is False


def test_create_task_requirement_emits_task_for_any_type() -> None:
    actions = DecisionEngine().decide(Analysis(type="alert", required_actions=["create_task"]))

    assert [action.kind for action in actions] == ["clickup_task"]
    assert actions[0].payload["name"].startswith("[ALERT]")


def test_determine_route_paths() -> None:
    path_a = determine_route({"type": "audit", "priority": "medium", "risk_level": 8})
    assert (path_a.path, path_a.channel, path_a.escalate) == ("A", "audit_result", True)

    path_b = determine_route({"type": "report", "category": "legal"})
    assert (path_b.path, path_b.channel) == ("B", "report_generated")

    path_c = determine_route({"type": "task", "risk_level": "not-a-number"})
    assert (path_c.path, path_c.channel) == ("C", "task_created")
