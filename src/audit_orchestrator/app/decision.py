"""Rule table mapping an Analysis to the ordered list of proposed actions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from .models import Action, Analysis, RoutePath

PRIORITY_CODES = {"critical": 1, "urgent": 1, "high": 2, "medium": 3, "low": 4}
URGENCY_OFFSETS = {
    "immediate": timedelta(hours=1),
    "within_hours": timedelta(hours=4),
    "within_days": timedelta(days=2),
    "flexible": timedelta(days=7),
}
TASK_NAME_PREFIXES = {"audit": "[AUDIT]", "report": "[REPORT]", "alert": "[ALERT]", "consultation": "[CONSULT]"}


@dataclass(frozen=True)
class DecisionRules:
    """Category and priority sets shared by the decision engine and the validation gate."""

    high_priority: frozenset[str] = frozenset({"critical", "urgent", "high"})
    auto_approve: frozenset[str] = frozenset({"low", "routine", "standard"})
    requires_review: frozenset[str] = frozenset({"compliance", "legal", "financial"})
    escalation: frozenset[str] = frozenset({"compliance", "legal", "financial", "security_breach", "fraud"})
    escalation_risk_level: int = 8
    critical_risk_level: int = 9
    task_types: frozenset[str] = frozenset({"task", "audit"})


@dataclass(frozen=True)
class DecisionRule:
    name: str
    applies: Callable[[Analysis, DecisionRules], bool]
    build: Callable[[Analysis, DecisionRules], Action]


def map_priority(priority: str) -> int:
    return PRIORITY_CODES.get(priority.lower(), 3)


def due_date_for(urgency: str, *, now: datetime | None = None) -> datetime:
    now = now or datetime.now(UTC)
    return now + URGENCY_OFFSETS.get(urgency, URGENCY_OFFSETS["within_days"])


def task_name(analysis: Analysis) -> str:
    prefix = TASK_NAME_PREFIXES.get(analysis.type, "[TASK]")
    subject = analysis.entities.project or analysis.entities.client or analysis.category.replace("_", " ")
    return f"{prefix} {subject} ({analysis.priority})"


def task_description(analysis: Analysis) -> str:
    lines = [
        "## Automatic analysis",
        "",
        f"- **Type**: {analysis.type}",
        f"- **Priority**: {analysis.priority}",
        f"- **Category**: {analysis.category}",
        f"- **Risk level**: {analysis.risk_level}/10",
        f"- **Complexity**: {analysis.complexity}",
        f"- **Estimated duration**: {analysis.estimated_duration_minutes} min",
        f"- **Confidence**: {analysis.confidence:.0%}",
    ]
    if analysis.entities.client:
        lines.append(f"- **Client**: {analysis.entities.client}")
    if analysis.reasoning:
        lines.extend(["", "## Reasoning", "", analysis.reasoning])
    return "\n".join(lines)


def _wants_task(analysis: Analysis, rules: DecisionRules) -> bool:
    return "create_task" in analysis.required_actions or analysis.type in rules.task_types


def _build_task(analysis: Analysis, rules: DecisionRules) -> Action:
    payload: dict[str, Any] = {
        "name": task_name(analysis),
        "description": task_description(analysis),
        "priority": map_priority(analysis.priority),
        "due_date": due_date_for(analysis.urgency).isoformat(),
        "tags": [analysis.type, analysis.category, *analysis.keywords[:5]],
    }
    return Action(kind="clickup_task", payload=payload)


def _build_audit_trigger(analysis: Analysis, rules: DecisionRules) -> Action:
    return Action(
        kind="zapier_trigger",
        payload={
            "channel": "audit_result",
            "data": {
                "audit_type": analysis.category,
                "priority": analysis.priority,
                "risk_level": analysis.risk_level,
                "client": analysis.entities.client,
            },
        },
    )


def _build_alpha(analysis: Analysis, rules: DecisionRules) -> Action:
    return Action(
        kind="workflow_alpha",
        payload={
            "project_name": analysis.entities.project or task_name(analysis),
            "client": analysis.entities.client or "",
            "project_type": analysis.type,
            "priority": analysis.priority,
            "description": analysis.reasoning,
        },
    )


def _build_omega(analysis: Analysis, rules: DecisionRules) -> Action:
    return Action(
        kind="workflow_omega",
        payload={
            "project_name": analysis.entities.project,
            "generate_report": True,
            "notify_client": analysis.priority != "low",
        },
    )


def _build_generation(analysis: Analysis, rules: DecisionRules) -> Action:
    return Action(
        kind="ai_generation",
        payload={
            "content_type": analysis.type,
            "data": analysis.model_dump(mode="json", exclude={"source"}),
        },
    )


def _build_notification(analysis: Analysis, rules: DecisionRules) -> Action:
    return Action(
        kind="notification",
        payload={
            "channels": ["email", "webhook"],
            "message": f"{analysis.priority.upper()} priority {analysis.type} received ({analysis.category})",
            "urgency": analysis.urgency,
        },
    )


def _build_escalation(analysis: Analysis, rules: DecisionRules) -> Action:
    level = "critical" if analysis.risk_level >= rules.critical_risk_level else "high"
    return Action(
        kind="escalation",
        payload={
            "level": level,
            "reason": f"category={analysis.category} risk_level={analysis.risk_level}",
            "requires_immediate_action": level == "critical",
        },
    )


# Emission order follows table order.
DEFAULT_RULE_TABLE: tuple[DecisionRule, ...] = (
    DecisionRule("task", _wants_task, _build_task),
    DecisionRule("audit_trigger", lambda a, r: a.type == "audit", _build_audit_trigger),
    DecisionRule("workflow_alpha", lambda a, r: a.suggested_workflow == "alpha", _build_alpha),
    DecisionRule("workflow_omega", lambda a, r: a.suggested_workflow == "omega", _build_omega),
    DecisionRule(
        "generation",
        lambda a, r: a.type == "report" or "generate_content" in a.required_actions,
        _build_generation,
    ),
    DecisionRule("notification", lambda a, r: a.priority in r.high_priority, _build_notification),
    DecisionRule(
        "escalation",
        lambda a, r: a.category in r.escalation or a.risk_level >= r.escalation_risk_level,
        _build_escalation,
    ),
)


@dataclass
class DecisionEngine:
    rules: DecisionRules = field(default_factory=DecisionRules)
    table: tuple[DecisionRule, ...] = DEFAULT_RULE_TABLE

    def decide(self, analysis: Analysis) -> list[Action]:
        return [rule.build(analysis, self.rules) for rule in self.table if rule.applies(analysis, self.rules)]


def determine_route(data: dict[str, Any], rules: DecisionRules | None = None) -> RoutePath:
    """Pick automation path A (audit), B (review-required report) or C (automatic task)."""
    rules = rules or DecisionRules()
    request_type = str(data.get("type", "")).lower()
    priority = str(data.get("priority", "")).lower()
    category = str(data.get("category", "")).lower()
    try:
        risk_level = int(data.get("risk_level", data.get("riskLevel", 0)) or 0)
    except (TypeError, ValueError):
        risk_level = 0

    if request_type == "audit" and (priority in {"critical", "high"} or risk_level >= 7):
        return RoutePath(
            path="A",
            action="create_audit_workflow",
            channel="audit_result",
            escalate=risk_level >= rules.escalation_risk_level,
            notify_team=True,
            create_tasks=True,
        )
    if category in rules.requires_review:
        return RoutePath(path="B", action="generate_compliance_report", channel="report_generated", notify_team=True)
    return RoutePath(path="C", action="automatic_processing", channel="task_created", create_tasks=True)
