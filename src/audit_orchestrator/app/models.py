"""Pydantic models shared by the pipeline stages, the lifecycle and the API.

Terms used in this file:
- Analysis: structured interpretation of one incoming request.
- Action: a unit of work the decision engine proposes for an Analysis.
- Envelope: the signed JSON wrapper around every outbound webhook payload.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Priority = Literal["critical", "high", "medium", "low"]
AnalysisSource = Literal["llm", "heuristic"]

# Closed set of action kinds; the executor dispatches over every member.
ActionKind = Literal[
    "clickup_task",
    "zapier_trigger",
    "workflow_alpha",
    "workflow_omega",
    "ai_generation",
    "notification",
    "escalation",
]
ValidationMethod = Literal["automatic", "requires_manual_review", "requires_approval", "auto_approved"]
ExecutionStatus = Literal["completed", "failed", "skipped"]

ProjectStatus = Literal["initialized", "active", "completed", "failed"]
ProjectPhase = Literal["alpha", "omega"]
AlertType = Literal["info", "success", "warning", "error"]

# Outbound webhook channels. Unconfigured channels fall back to "generic".
WebhookChannel = Literal[
    "agent_activity",
    "audit_result",
    "report_generated",
    "task_created",
    "alpha_omega",
    "sync_agent",
    "table_update",
    "notification",
    "escalation",
    "generic",
]
InboundEvent = Literal[
    "audit_request",
    "task_update",
    "report_request",
    "sync_request",
    "agent_command",
    "generic",
]
AgentMode = Literal["autonomous", "supervised", "manual"]


class AnalysisEntities(BaseModel):
    client: str | None = None
    project: str | None = None
    deadline: str | None = None


class Analysis(BaseModel):
    """Structured interpretation of a request. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    type: str = "task"
    priority: Priority = "medium"
    category: str = "operational"
    complexity: str = "moderate"
    urgency: str = "within_days"
    risk_level: int = Field(default=5, ge=1, le=10)
    required_actions: list[str] = Field(default_factory=list)
    suggested_workflow: str = "standard"
    estimated_duration_minutes: int = Field(default=60, ge=0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    keywords: list[str] = Field(default_factory=list)
    entities: AnalysisEntities = Field(default_factory=AnalysisEntities)
    reasoning: str = ""
    source: AnalysisSource = "heuristic"


class Action(BaseModel):
    kind: ActionKind
    payload: dict[str, Any] = Field(default_factory=dict)
    validated: bool = False
    validation_method: ValidationMethod | None = None
    approval_required: bool = False
    reason: str | None = None


class ExecutionResult(BaseModel):
    action: ActionKind
    status: ExecutionStatus
    detail: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class TimelineEntry(BaseModel):
    action: str
    timestamp: datetime
    details: str = ""


class ReportRef(BaseModel):
    id: str
    title: str
    type: str = "report"
    added_at: datetime
    content: str | None = None


class Project(BaseModel):
    id: str
    name: str
    client: str
    type: str = "general"
    priority: str = "medium"
    description: str = ""
    status: ProjectStatus = "initialized"
    phase: ProjectPhase = "alpha"
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    external_task_ref: str | None = None
    external_task_url: str | None = None
    reports: list[ReportRef] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)


class Alert(BaseModel):
    id: str
    type: AlertType = "info"
    title: str
    message: str
    project_id: str | None = None
    timestamp: datetime
    read: bool = False


class TransitionResult(BaseModel):
    """Outcome of an Alpha or Omega transition. Never raised, always returned."""

    success: bool
    project: Project | None = None
    error: str | None = None
    phases: list[str] = Field(default_factory=list)


class EnvelopeMetadata(BaseModel):
    request_id: str
    priority: str = "normal"
    retry_count: int = 0


class WebhookEnvelope(BaseModel):
    event: str
    timestamp: datetime
    source: str
    version: str
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: EnvelopeMetadata


class DeliveryResult(BaseModel):
    success: bool
    channel: str
    request_id: str
    attempts: int = 0
    status_code: int | None = None
    error: str | None = None
    skipped: bool = False


class QueuedEvent(BaseModel):
    id: str
    channel: str
    queued_at: datetime
    position: int


class PatternStats(BaseModel):
    analysis_type: str
    priority: str
    count: int = 0
    avg_success_rate: float = 0.0


class ExecutionRecord(BaseModel):
    request_id: str
    timestamp: datetime
    input_excerpt: str
    analysis_type: str
    analysis_priority: str
    actions_count: int
    success_rate: float
    confidence: float


class GenerationResult(BaseModel):
    status: Literal["generated", "not_configured", "failed"]
    text: str = ""
    error: str | None = None


class GeneratedDocument(BaseModel):
    content_type: str
    source: Literal["generated", "fallback"]
    content: str
    generated_at: datetime
    word_count: int = 0
    estimated_read_minutes: int = 0


class TaskDraft(BaseModel):
    """Fields sent to the task tracker when creating a task."""

    name: str = Field(min_length=1)
    description: str = ""
    priority: int = Field(default=3, ge=1, le=4)
    tags: list[str] = Field(default_factory=list)
    due_date: datetime | None = None
    assignees: list[str] = Field(default_factory=list)
    status: str | None = None


class CreatedTask(BaseModel):
    task_id: str
    url: str | None = None
    name: str | None = None


class RoutePath(BaseModel):
    path: Literal["A", "B", "C"]
    action: str
    channel: WebhookChannel
    escalate: bool = False
    notify_team: bool = False
    create_tasks: bool = False


class PipelineResult(BaseModel):
    success: bool
    request_id: str
    agent_mode: AgentMode
    execution_time_ms: int = 0
    analysis: Analysis | None = None
    actions: list[Action] = Field(default_factory=list)
    results: list[ExecutionResult] = Field(default_factory=list)
    sync: DeliveryResult | None = None
    error: str | None = None
    fallback_action: str | None = None


class ProcessRequest(BaseModel):
    """Request body for POST /agent/process."""

    request: dict[str, Any] = Field(default_factory=dict)


class StartProjectRequest(BaseModel):
    project_name: str = ""
    client: str = ""
    project_type: str = "general"
    priority: str = "medium"
    description: str = ""
    team_members: list[str] = Field(default_factory=list)
    deadline: str | None = None


class FinishProjectRequest(BaseModel):
    project_id: str | None = None
    project_name: str | None = None
    summary: str = ""
    findings: list[str] = Field(default_factory=list)
    generate_report: bool = True
    notify_client: bool = True
    force_complete: bool = False


class UpdateStatusRequest(BaseModel):
    status: ProjectStatus
    notes: str = ""


class AddReportRequest(BaseModel):
    title: str = Field(min_length=1)
    type: str = "report"
    content: str | None = None


class ModeRequest(BaseModel):
    mode: str


class ThresholdRequest(BaseModel):
    threshold: float


class WebhookSendRequest(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    priority: str = "normal"


class TableSyncRequest(BaseModel):
    record: dict[str, Any] = Field(default_factory=dict)
    operation: Literal["insert", "update", "upsert", "delete"] = "upsert"
