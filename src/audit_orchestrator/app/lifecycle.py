"""Project lifecycle: Alpha (start) and Omega (finish) transitions over an in-memory store.

Terms used in this file:
- Alpha: registers a project, mirrors it into the task tracker and announces it.
- Omega: closes a project, produces its closing report and archives it.
- Timeline: append-only audit trail kept on every project.
"""

from __future__ import annotations

import logging
import random
import string
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .decision import map_priority
from .errors import AdapterCallFailed, AdapterUnavailable, InvalidTransition, MalformedResponse, ProjectNotFound
from .llm import ContentService
from .models import (
    AddReportRequest,
    Alert,
    DeliveryResult,
    FinishProjectRequest,
    Project,
    ProjectStatus,
    ReportRef,
    StartProjectRequest,
    TaskDraft,
    TimelineEntry,
    TransitionResult,
)
from .task_tracker import TaskTrackerClient
from .webhooks import WebhookDelivery

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "initialized": frozenset({"active", "failed"}),
    "active": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}
TRACKER_ERRORS = (AdapterUnavailable, AdapterCallFailed, MalformedResponse)
ALERT_LIMIT = 200


@dataclass(frozen=True)
class TemplateTask:
    name: str
    priority: int
    tags: tuple[str, ...]


@dataclass(frozen=True)
class ProjectTemplate:
    key: str
    name: str
    tasks: tuple[TemplateTask, ...]


PROJECT_TEMPLATES: dict[str, ProjectTemplate] = {
    "audit_forensic": ProjectTemplate(
        "audit_forensic",
        "Forensic Audit",
        (
            TemplateTask("Evidence collection", 2, ("evidence",)),
            TemplateTask("Preliminary analysis", 2, ("analysis",)),
            TemplateTask("Detailed investigation", 3, ("investigation",)),
            TemplateTask("Findings documentation", 3, ("documentation",)),
            TemplateTask("Report drafting", 2, ("report",)),
            TemplateTask("Review and validation", 2, ("review",)),
            TemplateTask("Client delivery", 1, ("delivery",)),
        ),
    ),
    "compliance": ProjectTemplate(
        "compliance",
        "Compliance Audit",
        (
            TemplateTask("Policy review", 2, ("policies",)),
            TemplateTask("Control assessment", 2, ("controls",)),
            TemplateTask("Gap identification", 2, ("gaps",)),
            TemplateTask("Remediation plan", 3, ("remediation",)),
            TemplateTask("Compliance report", 2, ("report",)),
        ),
    ),
    "security": ProjectTemplate(
        "security",
        "Security Assessment",
        (
            TemplateTask("Vulnerability scan", 1, ("vulnerabilities",)),
            TemplateTask("Penetration testing", 2, ("pentest",)),
            TemplateTask("Risk analysis", 2, ("risks",)),
            TemplateTask("Security recommendations", 3, ("recommendations",)),
            TemplateTask("Executive report", 2, ("report",)),
        ),
    ),
    "general": ProjectTemplate(
        "general",
        "General Project",
        (
            TemplateTask("Initial planning", 2, ("planning",)),
            TemplateTask("Execution", 3, ("execution",)),
            TemplateTask("Review", 3, ("review",)),
            TemplateTask("Delivery", 2, ("delivery",)),
        ),
    ),
}
TEMPLATE_ALIASES = {"audit": "audit_forensic", "forensic": "audit_forensic", "security_breach": "security"}


def resolve_template(project_type: str) -> ProjectTemplate:
    key = TEMPLATE_ALIASES.get(project_type, project_type)
    return PROJECT_TEMPLATES.get(key, PROJECT_TEMPLATES["general"])


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _base36(value: int) -> str:
    digits = string.digits + string.ascii_uppercase
    encoded = ""
    while value:
        value, remainder = divmod(value, 36)
        encoded = digits[remainder] + encoded
    return encoded or "0"


def new_project_id() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"PRJ-{_base36(int(time.time() * 1000))}-{suffix}"


class ProjectStore:
    """Active projects, a bounded archive of completed ones, alerts and metrics."""

    def __init__(self, *, archive_limit: int = 100) -> None:
        self._lock = threading.RLock()
        self._active: dict[str, Project] = {}
        self._completed: deque[Project] = deque(maxlen=archive_limit)
        self._alerts: deque[Alert] = deque(maxlen=ALERT_LIMIT)
        self._project_locks: dict[str, threading.Lock] = {}
        self._metrics: dict[str, Any] = {
            "projects_started": 0,
            "projects_completed": 0,
            "average_completion_ms": 0.0,
            "completion_samples": 0,
        }

    def lock_for(self, project_id: str) -> threading.Lock:
        with self._lock:
            return self._project_locks.setdefault(project_id, threading.Lock())

    def register(self, project: Project) -> Project:
        with self._lock:
            self._active[project.id] = project
            return project.model_copy(deep=True)

    def _find(self, project_id: str) -> Project:
        project = self._active.get(project_id)
        if project is not None:
            return project
        for archived in self._completed:
            if archived.id == project_id:
                return archived
        raise ProjectNotFound(project_id)

    def get(self, project_id: str) -> Project | None:
        with self._lock:
            try:
                return self._find(project_id).model_copy(deep=True)
            except ProjectNotFound:
                return None

    def find_active_by_name(self, name: str) -> Project | None:
        with self._lock:
            for project in self._active.values():
                if project.name == name and project.status != "failed":
                    return project.model_copy(deep=True)
        return None

    def append_timeline(self, project_id: str, action: str, details: str = "") -> None:
        with self._lock:
            project = self._find(project_id)
            now = _utc_now()
            project.timeline.append(TimelineEntry(action=action, timestamp=now, details=details))
            project.updated_at = now

    def set_status(self, project_id: str, status: ProjectStatus) -> Project:
        with self._lock:
            project = self._find(project_id)
            if status not in ALLOWED_TRANSITIONS[project.status]:
                raise InvalidTransition(project.status, status)
            project.status = status
            project.updated_at = _utc_now()
            if status == "completed":
                project.phase = "omega"
                project.completed_at = project.updated_at
            return project.model_copy(deep=True)

    def update(self, project_id: str, **fields: Any) -> Project:
        with self._lock:
            project = self._find(project_id)
            for name, value in fields.items():
                setattr(project, name, value)
            project.updated_at = _utc_now()
            return project.model_copy(deep=True)

    def add_report(self, project_id: str, report: ReportRef) -> None:
        with self._lock:
            project = self._find(project_id)
            project.reports.append(report)
            project.updated_at = _utc_now()

    def archive(self, project_id: str) -> None:
        with self._lock:
            project = self._active.pop(project_id, None)
            if project is None:
                raise ProjectNotFound(project_id)
            if self._completed.maxlen is not None and len(self._completed) == self._completed.maxlen:
                self._project_locks.pop(self._completed[0].id, None)
            self._completed.append(project)

    def active(self) -> list[Project]:
        with self._lock:
            return [project.model_copy(deep=True) for project in self._active.values()]

    def completed(self) -> list[Project]:
        with self._lock:
            return [project.model_copy(deep=True) for project in self._completed]

    def record_started(self) -> None:
        with self._lock:
            self._metrics["projects_started"] += 1

    def record_completed(self, duration_ms: float | None) -> None:
        with self._lock:
            self._metrics["projects_completed"] += 1
            if duration_ms is None:
                return
            self._metrics["completion_samples"] += 1
            samples = self._metrics["completion_samples"]
            average = self._metrics["average_completion_ms"]
            self._metrics["average_completion_ms"] = (average * (samples - 1) + duration_ms) / samples

    def metrics(self) -> dict[str, Any]:
        with self._lock:
            snapshot = dict(self._metrics)
            snapshot["active_projects"] = len(self._active)
            snapshot["archived_projects"] = len(self._completed)
            return snapshot

    def add_alert(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.appendleft(alert)

    def alerts(self, *, unread_only: bool = False) -> list[Alert]:
        with self._lock:
            return [alert.model_copy() for alert in self._alerts if not (unread_only and alert.read)]

    def mark_alert_read(self, alert_id: str) -> Alert | None:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.read = True
                    return alert.model_copy()
        return None

    def mark_all_alerts_read(self) -> int:
        with self._lock:
            changed = 0
            for alert in self._alerts:
                if not alert.read:
                    alert.read = True
                    changed += 1
            return changed


class ProjectLifecycle:
    def __init__(
        self,
        *,
        store: ProjectStore,
        tracker: TaskTrackerClient,
        webhooks: WebhookDelivery,
        content: ContentService,
        pacing_s: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.webhooks = webhooks
        self.content = content
        self.pacing_s = pacing_s
        self._sleep = sleep

    def templates(self) -> list[dict[str, Any]]:
        return [
            {"key": template.key, "name": template.name, "task_count": len(template.tasks)}
            for template in PROJECT_TEMPLATES.values()
        ]

    def start_project(self, params: StartProjectRequest | dict[str, Any]) -> TransitionResult:
        phases: list[str] = []
        try:
            request = params if isinstance(params, StartProjectRequest) else StartProjectRequest.model_validate(params)
        except ValueError as exc:
            return TransitionResult(success=False, error=str(exc))
        if not request.project_name.strip() or not request.client.strip():
            return TransitionResult(success=False, error="project_name and client are required")

        now = _utc_now()
        project = Project(
            id=new_project_id(),
            name=request.project_name.strip(),
            client=request.client.strip(),
            type=request.project_type,
            priority=request.priority,
            description=request.description,
            created_at=now,
            updated_at=now,
            timeline=[TimelineEntry(action="PROJECT_INITIALIZED", timestamp=now, details="Alpha started")],
        )
        self.store.register(project)
        phases.append("initialization")
        logger.info("project alpha event=start project_id=%s type=%s", project.id, project.type)

        with self.store.lock_for(project.id):
            try:
                self._create_structure(project, request)
                phases.append("structure_creation")
                self._notify_start(project, request)
                phases.append("team_notification")
                self._activate_workflow(project)
                phases.append("workflow_activation")

                self.store.set_status(project.id, "active")
                self.store.append_timeline(project.id, "PROJECT_ACTIVATED", "Alpha completed")
                self.store.record_started()
                self._alert("info", "Project started", f"{project.name} for {project.client} is active", project.id)
            except Exception as exc:  # noqa: BLE001
                logger.exception("project alpha event=failed project_id=%s", project.id)
                return TransitionResult(success=False, project=self._fail(project.id, exc), error=str(exc), phases=phases)

        logger.info("project alpha event=completed project_id=%s", project.id)
        return TransitionResult(success=True, project=self.store.get(project.id), phases=phases)

    def _create_structure(self, project: Project, request: StartProjectRequest) -> None:
        template = resolve_template(project.type)
        try:
            main_task = self.tracker.create_task(
                TaskDraft(
                    name=f"[{project.id}] {project.name}",
                    description=f"Client: {project.client}\n\n{project.description}".strip(),
                    priority=map_priority(project.priority),
                    tags=["project", project.type, "alpha"],
                )
            )
        except TRACKER_ERRORS as exc:
            logger.warning("project alpha event=tracker_unavailable project_id=%s reason=%s", project.id, exc)
            self.store.append_timeline(project.id, "TASK_SYNC_FAILED", str(exc))
            return

        self.store.update(project.id, external_task_ref=main_task.task_id, external_task_url=main_task.url)
        self.store.append_timeline(project.id, "TASK_CREATED", f"task_id={main_task.task_id}")

        created = 0
        for index, task in enumerate(template.tasks):
            if index and self.pacing_s > 0:
                self._sleep(self.pacing_s)
            try:
                self.tracker.create_task(
                    TaskDraft(
                        name=f"{task.name} - {project.client}",
                        description=f"{template.name}: {task.name}",
                        priority=task.priority,
                        tags=[*task.tags, project.type],
                    ),
                    parent=main_task.task_id,
                )
                created += 1
            except TRACKER_ERRORS as exc:
                self.store.append_timeline(project.id, "SUBTASK_FAILED", f"{task.name}: {exc}")
        self.store.append_timeline(project.id, "SUBTASKS_CREATED", f"{created}/{len(template.tasks)} from {template.key}")

    def _notify_start(self, project: Project, request: StartProjectRequest) -> None:
        result = self.webhooks.trigger_alpha_flow(
            {
                "project_id": project.id,
                "project_name": project.name,
                "client": project.client,
                "type": project.type,
                "priority": project.priority,
                "deadline": request.deadline,
            }
        )
        self._record_delivery(project.id, "START_NOTIFICATION", result)
        if request.team_members:
            team_result = self.webhooks.send_notification(
                f"New project {project.name} ({project.id}) for {project.client}",
                recipients=request.team_members,
                project_id=project.id,
            )
            self._record_delivery(project.id, "TEAM_NOTIFICATION", team_result)

    def _activate_workflow(self, project: Project) -> None:
        result = self.webhooks.sync_agent_activity(
            {"type": "project_started", "project_id": project.id, "project_name": project.name}
        )
        self._record_delivery(project.id, "WORKFLOW_ACTIVATION", result)

    def finish_project(self, params: FinishProjectRequest | dict[str, Any]) -> TransitionResult:
        try:
            request = params if isinstance(params, FinishProjectRequest) else FinishProjectRequest.model_validate(params)
        except ValueError as exc:
            return TransitionResult(success=False, error=str(exc))

        project = self._lookup(request)
        if project is None:
            reference = request.project_id or request.project_name or "<unspecified>"
            if not request.force_complete:
                return TransitionResult(success=False, error=f"Project {reference} does not exist")
            return self._force_unknown(request, reference)

        with self.store.lock_for(project.id):
            phases: list[str] = []
            current = self.store.get(project.id)
            if current is None or current.status not in {"active", "initialized"}:
                status = current.status if current else "missing"
                return TransitionResult(
                    success=False, project=current, error=f"Project {project.id} cannot be completed from status {status}"
                )
            if current.status == "initialized":
                if not request.force_complete:
                    return TransitionResult(
                        success=False, project=current, error=f"Project {project.id} has not finished Alpha"
                    )
                self.store.set_status(project.id, "active")
                self.store.append_timeline(project.id, "PROJECT_ACTIVATED", "Forced before Omega")

            logger.info("project omega event=start project_id=%s", project.id)
            try:
                phases.append("validation")
                if request.generate_report:
                    self._generate_report(current, request)
                    phases.append("report_generation")
                if current.external_task_ref:
                    self._close_external_task(current, request)
                    phases.append("task_closure")

                completed = self.store.set_status(project.id, "completed")
                self.store.append_timeline(project.id, "PROJECT_COMPLETED", request.summary or "Omega completed")
                self.store.archive(project.id)
                phases.append("archival")

                if request.notify_client:
                    result = self.webhooks.trigger_omega_flow(
                        {
                            "project_id": completed.id,
                            "project_name": completed.name,
                            "client": completed.client,
                            "reports": len(completed.reports),
                        }
                    )
                    self._record_delivery(project.id, "COMPLETION_NOTIFICATION", result)
                    phases.append("notification")

                duration_ms = None
                if completed.completed_at is not None:
                    duration_ms = (completed.completed_at - completed.created_at).total_seconds() * 1000
                self.store.record_completed(duration_ms)
                self._alert("success", "Project completed", f"{completed.name} was closed", completed.id)
            except Exception as exc:  # noqa: BLE001
                logger.exception("project omega event=failed project_id=%s", project.id)
                return TransitionResult(success=False, project=self._fail(project.id, exc), error=str(exc), phases=phases)

        logger.info("project omega event=completed project_id=%s", project.id)
        return TransitionResult(success=True, project=self.store.get(project.id), phases=phases)

    def _lookup(self, request: FinishProjectRequest) -> Project | None:
        if request.project_id:
            found = self.store.get(request.project_id)
            if found is not None:
                return found
        if request.project_name:
            return self.store.find_active_by_name(request.project_name)
        return None

    def _force_unknown(self, request: FinishProjectRequest, reference: str) -> TransitionResult:
        now = _utc_now()
        snapshot = Project(
            id=request.project_id or new_project_id(),
            name=request.project_name or reference,
            client="",
            status="completed",
            phase="omega",
            created_at=now,
            updated_at=now,
            completed_at=now,
            timeline=[TimelineEntry(action="FORCED_COMPLETION", timestamp=now, details="Project was not registered")],
        )
        if request.generate_report:
            document = self.content.generate_document(
                "closing_report", {"project_name": snapshot.name, "summary": request.summary, "findings": request.findings}
            )
            snapshot.reports.append(
                ReportRef(id=f"RPT-{uuid.uuid4().hex[:8]}", title=f"Final report - {snapshot.name}", type="closing_report", added_at=now, content=document.content)
            )
        if request.notify_client:
            self.webhooks.trigger_omega_flow({"project_id": snapshot.id, "project_name": snapshot.name, "forced": True})
        self.store.record_completed(None)
        logger.warning("project omega event=forced_unknown reference=%s", reference)
        return TransitionResult(success=True, project=snapshot, phases=["validation", "forced_completion"])

    def _generate_report(self, project: Project, request: FinishProjectRequest) -> None:
        document = self.content.generate_document(
            "closing_report",
            {
                "project_name": project.name,
                "client": project.client,
                "type": project.type,
                "summary": request.summary or project.description,
                "findings": request.findings,
                "started": project.created_at.isoformat(),
            },
        )
        report = ReportRef(
            id=f"RPT-{uuid.uuid4().hex[:8]}",
            title=f"Final report - {project.name}",
            type="closing_report",
            added_at=document.generated_at,
            content=_frame_report(project, document.content),
        )
        self.store.add_report(project.id, report)
        self.store.append_timeline(
            project.id, "REPORT_GENERATED", f"source={document.source} words={document.word_count}"
        )

    def _close_external_task(self, project: Project, request: FinishProjectRequest) -> None:
        task_id = project.external_task_ref or ""
        try:
            self.tracker.update_task(task_id, {"status": "complete"})
            self.tracker.add_comment(task_id, f"Project closed by Omega. {request.summary}".strip())
        except TRACKER_ERRORS as exc:
            self.store.append_timeline(project.id, "TASK_CLOSE_FAILED", str(exc))
            return
        self.store.append_timeline(project.id, "TASK_COMPLETED", f"task_id={task_id}")

    def update_status(self, project_id: str, status: ProjectStatus, notes: str = "") -> Project:
        if self.store.get(project_id) is None:
            raise ProjectNotFound(project_id)
        if status == "completed":
            result = self.finish_project(
                FinishProjectRequest(project_id=project_id, summary=notes, generate_report=False, notify_client=False)
            )
            if not result.success or result.project is None:
                current = self.store.get(project_id)
                raise InvalidTransition(current.status if current else "missing", status)
            return result.project
        with self.store.lock_for(project_id):
            updated = self.store.set_status(project_id, status)
            self.store.append_timeline(project_id, "STATUS_UPDATED", f"{status} {notes}".strip())
        return self.store.get(project_id) or updated

    def add_report(self, project_id: str, request: AddReportRequest) -> ReportRef:
        report = ReportRef(
            id=f"RPT-{uuid.uuid4().hex[:8]}",
            title=request.title,
            type=request.type,
            added_at=_utc_now(),
            content=request.content,
        )
        self.store.add_report(project_id, report)
        self.store.append_timeline(project_id, "REPORT_ADDED", request.title)
        return report

    def get_project(self, project_id: str) -> Project:
        project = self.store.get(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def _record_delivery(self, project_id: str, prefix: str, result: DeliveryResult) -> None:
        if result.success:
            self.store.append_timeline(project_id, f"{prefix}_SENT", f"channel={result.channel}")
        elif result.skipped:
            self.store.append_timeline(project_id, f"{prefix}_SKIPPED", result.error or "")
        else:
            self.store.append_timeline(project_id, f"{prefix}_FAILED", result.error or "")

    def _fail(self, project_id: str, exc: Exception) -> Project | None:
        try:
            self.store.set_status(project_id, "failed")
            self.store.append_timeline(project_id, "PROJECT_FAILED", str(exc))
        except (InvalidTransition, ProjectNotFound) as transition_error:
            logger.warning("project event=fail_not_recorded project_id=%s reason=%s", project_id, transition_error)
        self._alert("error", "Project transition failed", str(exc), project_id)
        return self.store.get(project_id)

    def _alert(self, alert_type: str, title: str, message: str, project_id: str | None) -> None:
        self.store.add_alert(
            Alert(
                id=f"ALT-{uuid.uuid4().hex[:8]}",
                type=alert_type,  # type: ignore[arg-type]
                title=title,
                message=message,
                project_id=project_id,
                timestamp=_utc_now(),
            )
        )


def _frame_report(project: Project, body: str) -> str:
    header = f"# {project.name}\n\nClient: {project.client} | Project: {project.id}\n\n---\n\n"
    footer = f"\n\n---\n\nClosed {_utc_now().strftime('%Y-%m-%d')} by the Omega workflow.\n"
    return header + body.strip() + footer
