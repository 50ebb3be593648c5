"""FastAPI application wiring for the audit orchestrator.

Terms used in this file:
- app.state.agent: the OrchestratorAgent shared by every route.
- Alpha/Omega routes: start and finish a project through the lifecycle.
- Incoming webhook: a relay event verified against the shared secret before routing.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request

from .app.agent import OrchestratorAgent, build_agent
from .app.decision import determine_route
from .app.errors import AdapterCallFailed, AdapterUnavailable, InvalidTransition, MalformedResponse, ProjectNotFound
from .app.inbound import InboundRouter
from .app.models import (
    AddReportRequest,
    Alert,
    DeliveryResult,
    FinishProjectRequest,
    ModeRequest,
    PipelineResult,
    ProcessRequest,
    Project,
    QueuedEvent,
    ReportRef,
    RoutePath,
    StartProjectRequest,
    TableSyncRequest,
    ThresholdRequest,
    TransitionResult,
    UpdateStatusRequest,
    WebhookSendRequest,
)
from .app.webhooks import KNOWN_CHANNELS
from .config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(settings_override: Settings | None = None, agent: OrchestratorAgent | None = None) -> FastAPI:
    """Application factory. Tests pass their own settings or a pre-wired agent."""
    settings = settings_override or get_settings()
    agent = agent or build_agent(settings)
    inbound = InboundRouter(agent)

    app = FastAPI(title=settings.app_name, version=settings.webhook_version)
    app.state.settings = settings
    app.state.agent = agent
    app.state.inbound = inbound

    @app.get("/health")
    @app.get("/healthz")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # Agent pipeline and configuration.

    @app.post("/agent/process", response_model=PipelineResult)
    def process(payload: ProcessRequest) -> PipelineResult:
        return app.state.agent.process_request(payload.request)

    @app.get("/agent/status")
    def agent_status() -> dict[str, Any]:
        return app.state.agent.get_status()

    @app.put("/agent/mode")
    def set_mode(payload: ModeRequest) -> dict[str, str]:
        try:
            mode = app.state.agent.set_mode(payload.mode)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"mode": mode}

    @app.put("/agent/threshold")
    def set_threshold(payload: ThresholdRequest) -> dict[str, float]:
        try:
            threshold = app.state.agent.set_confidence_threshold(payload.threshold)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"confidence_threshold": threshold}

    @app.get("/agent/learning")
    def learning_stats() -> dict[str, Any]:
        return app.state.agent.learning_stats()

    # Project lifecycle.

    @app.post("/projects/alpha", response_model=TransitionResult)
    def start_project(payload: StartProjectRequest) -> TransitionResult:
        return app.state.agent.lifecycle.start_project(payload)

    @app.post("/projects/omega", response_model=TransitionResult)
    def finish_project(payload: FinishProjectRequest) -> TransitionResult:
        return app.state.agent.lifecycle.finish_project(payload)

    @app.get("/projects/active", response_model=list[Project])
    def active_projects() -> list[Project]:
        return app.state.agent.lifecycle.store.active()

    @app.get("/projects/completed", response_model=list[Project])
    def completed_projects() -> list[Project]:
        return app.state.agent.lifecycle.store.completed()

    @app.get("/projects/metrics")
    def project_metrics() -> dict[str, Any]:
        return app.state.agent.lifecycle.store.metrics()

    @app.get("/projects/templates")
    def project_templates() -> dict[str, Any]:
        return {"templates": app.state.agent.lifecycle.templates()}

    @app.get("/projects/{project_id}", response_model=Project)
    def get_project(project_id: str) -> Project:
        try:
            return app.state.agent.lifecycle.get_project(project_id)
        except ProjectNotFound as exc:
            raise HTTPException(status_code=404, detail="Project not found") from exc

    @app.put("/projects/{project_id}/status", response_model=Project)
    def update_project_status(project_id: str, payload: UpdateStatusRequest) -> Project:
        try:
            return app.state.agent.lifecycle.update_status(project_id, payload.status, payload.notes)
        except ProjectNotFound as exc:
            raise HTTPException(status_code=404, detail="Project not found") from exc
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @app.post("/projects/{project_id}/reports", response_model=ReportRef)
    def add_project_report(project_id: str, payload: AddReportRequest) -> ReportRef:
        try:
            return app.state.agent.lifecycle.add_report(project_id, payload)
        except ProjectNotFound as exc:
            raise HTTPException(status_code=404, detail="Project not found") from exc

    # Alerts.

    @app.get("/alerts", response_model=list[Alert])
    def list_alerts(unread_only: bool = False) -> list[Alert]:
        return app.state.agent.lifecycle.store.alerts(unread_only=unread_only)

    @app.put("/alerts/read-all")
    def mark_all_alerts_read() -> dict[str, int]:
        return {"updated": app.state.agent.lifecycle.store.mark_all_alerts_read()}

    @app.put("/alerts/{alert_id}/read", response_model=Alert)
    def mark_alert_read(alert_id: str) -> Alert:
        alert = app.state.agent.lifecycle.store.mark_alert_read(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return alert

    # Webhooks.

    @app.post("/webhooks/incoming")
    async def incoming_webhook(request: Request) -> dict[str, Any]:
        raw_body = await request.body()
        try:
            payload = json.loads(raw_body or b"{}")
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail="Body must be JSON") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")
        header = app.state.settings.webhook_signature_header
        result = app.state.inbound.process(payload, request.headers.get(header), raw_body=raw_body)
        if not result["success"] and result.get("reason") == "signature":
            raise HTTPException(status_code=401, detail=result["error"])
        return result

    @app.post("/webhooks/send/{channel}", response_model=DeliveryResult)
    def send_webhook(channel: str, payload: WebhookSendRequest) -> DeliveryResult:
        _require_channel(channel)
        return app.state.agent.webhooks.send(channel, payload.data, priority=payload.priority)

    @app.post("/webhooks/queue/{channel}", response_model=QueuedEvent)
    def queue_webhook(channel: str, payload: WebhookSendRequest) -> QueuedEvent:
        _require_channel(channel)
        return app.state.agent.webhooks.queue_event(channel, payload.data, priority=payload.priority)

    @app.post("/webhooks/test/{channel}", response_model=DeliveryResult)
    def test_webhook_channel(channel: str) -> DeliveryResult:
        _require_channel(channel)
        return app.state.agent.webhooks.test_channel(channel)

    @app.post("/webhooks/table/{table}", response_model=DeliveryResult)
    def sync_table(table: str, payload: TableSyncRequest) -> DeliveryResult:
        return app.state.agent.webhooks.sync_to_table(table, payload.record, operation=payload.operation)

    @app.post("/webhooks/route", response_model=RoutePath)
    def route_request(payload: dict[str, Any]) -> RoutePath:
        return determine_route(payload, app.state.agent.gate.rules)

    @app.get("/webhooks/stats")
    def webhook_stats() -> dict[str, Any]:
        stats = app.state.agent.webhooks.stats()
        stats["recent_deliveries"] = [item.model_dump(mode="json") for item in app.state.agent.webhooks.recent_deliveries()]
        return stats

    @app.get("/webhooks/config")
    def webhook_config() -> dict[str, Any]:
        return app.state.agent.webhooks.config()

    # Task tracker hierarchy.

    @app.get("/tracker/workspaces")
    def tracker_workspaces() -> dict[str, Any]:
        return {"workspaces": _tracker_call(app.state.agent.tracker.get_workspaces)}

    @app.get("/tracker/workspaces/{team_id}/spaces")
    def tracker_spaces(team_id: str) -> dict[str, Any]:
        return {"spaces": _tracker_call(app.state.agent.tracker.get_spaces, team_id)}

    @app.get("/tracker/spaces/{space_id}/lists")
    def tracker_lists(space_id: str) -> dict[str, Any]:
        return {"lists": _tracker_call(app.state.agent.tracker.get_lists, space_id)}

    @app.get("/tracker/lists/{list_id}/tasks/search")
    def tracker_search_tasks(list_id: str, q: str) -> dict[str, Any]:
        return {"tasks": _tracker_call(app.state.agent.tracker.search_tasks, q, list_id)}

    @app.delete("/tracker/cache")
    def tracker_clear_cache() -> dict[str, bool]:
        app.state.agent.tracker.clear_cache()
        return {"cleared": True}

    return app


def _require_channel(channel: str) -> None:
    if channel not in KNOWN_CHANNELS:
        raise HTTPException(status_code=404, detail=f"Unknown webhook channel {channel}")


def _tracker_call(fn: Any, *args: Any) -> Any:
    try:
        return fn(*args)
    except AdapterUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except (AdapterCallFailed, MalformedResponse) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
