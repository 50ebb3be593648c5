from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Any, assert_never

from .decision import map_priority
from .errors import AdapterCallFailed, AdapterUnavailable
from .lifecycle import ProjectLifecycle
from .llm import ContentService
from .models import Action, DeliveryResult, ExecutionResult, TaskDraft, TransitionResult
from .task_tracker import TaskTrackerClient
from .webhooks import WebhookDelivery

logger = logging.getLogger(__name__)


class ActionExecutor:
    """Runs validated actions one at a time; one failing action never stops the rest."""

    def __init__(
        self,
        *,
        tracker: TaskTrackerClient,
        webhooks: WebhookDelivery,
        content: ContentService,
        lifecycle: ProjectLifecycle,
    ) -> None:
        self.tracker = tracker
        self.webhooks = webhooks
        self.content = content
        self.lifecycle = lifecycle

    def execute(self, actions: list[Action], *, request_id: str = "") -> list[ExecutionResult]:
        started = time.perf_counter()
        results = [self._execute_one(action, request_id=request_id) for action in actions]
        failed = sum(1 for result in results if result.status == "failed")
        logger.info(
            "executor event=finished request_id=%s actions=%d failed=%d duration_ms=%d",
            request_id,
            len(results),
            failed,
            _duration_ms(started),
        )
        return results

    def _execute_one(self, action: Action, *, request_id: str) -> ExecutionResult:
        if not action.validated and action.validation_method != "auto_approved":
            return ExecutionResult(
                action=action.kind,
                status="skipped",
                detail={"reason": action.reason or "not validated"},
            )
        try:
            detail = self._dispatch(action, request_id=request_id)
        except AdapterUnavailable as exc:
            logger.warning("executor event=skipped action=%s reason=%s", action.kind, exc)
            return ExecutionResult(action=action.kind, status="skipped", detail={"reason": str(exc)})
        except Exception as exc:  # noqa: BLE001
            logger.warning("executor event=failed action=%s reason=%s", action.kind, exc)
            return ExecutionResult(action=action.kind, status="failed", error=str(exc))
        detail.setdefault("executed_at", _utc_now_iso())
        return ExecutionResult(action=action.kind, status="completed", detail=detail)

    def _dispatch(self, action: Action, *, request_id: str) -> dict[str, Any]:
        payload = action.payload
        match action.kind:
            case "clickup_task":
                return self._create_task(payload)
            case "zapier_trigger":
                channel = str(payload.get("channel", "generic"))
                data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
                return _delivery_detail(self.webhooks.send(channel, data, request_id=request_id or None))
            case "workflow_alpha":
                return _transition_detail(self.lifecycle.start_project(payload))
            case "workflow_omega":
                return _transition_detail(self.lifecycle.finish_project(payload))
            case "ai_generation":
                data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
                document = self.content.generate_document(str(payload.get("content_type", "report")), data)
                return {
                    "source": document.source,
                    "content_type": document.content_type,
                    "word_count": document.word_count,
                    "estimated_read_minutes": document.estimated_read_minutes,
                    "content": document.content,
                }
            case "notification":
                result = self.webhooks.send(
                    "notification",
                    {
                        "message": payload.get("message", ""),
                        "channels": payload.get("channels", []),
                        "urgency": payload.get("urgency"),
                    },
                    priority="high",
                    request_id=request_id or None,
                )
                return _delivery_detail(result)
            case "escalation":
                return self._escalate(payload, request_id=request_id)
            case _:
                assert_never(action.kind)

    def _create_task(self, payload: dict[str, Any]) -> dict[str, Any]:
        due_date = payload.get("due_date")
        draft = TaskDraft(
            name=str(payload.get("name") or "Automated task"),
            description=str(payload.get("description", "")),
            priority=int(payload.get("priority", 3)),
            tags=[str(tag) for tag in payload.get("tags", [])],
            due_date=datetime.fromisoformat(due_date) if isinstance(due_date, str) else None,
        )
        created = self.tracker.create_task(draft)
        return {"task_id": created.task_id, "url": created.url}

    def _escalate(self, payload: dict[str, Any], *, request_id: str) -> dict[str, Any]:
        level = str(payload.get("level", "high"))
        reason = str(payload.get("reason", "escalation"))
        detail: dict[str, Any] = {"level": level}
        errors: list[str] = []
        unavailable: list[str] = []

        try:
            created = self.tracker.create_task(
                TaskDraft(
                    name=f"[ESCALATION] {reason}",
                    description=f"Escalation level {level}. Requires immediate attention.",
                    priority=map_priority("critical"),
                    tags=["escalation", level],
                )
            )
            detail["task_id"] = created.task_id
        except AdapterUnavailable as exc:
            unavailable.append(str(exc))
        except Exception as exc:  # noqa: BLE001
            errors.append(f"task: {exc}")

        result = self.webhooks.send_escalation(reason, level=level, request_id=request_id or None)
        detail["webhook"] = result.model_dump(exclude_none=True)
        if result.skipped:
            unavailable.append(result.error or "escalation webhook not configured")
        elif not result.success:
            errors.append(f"webhook: {result.error}")

        if errors:
            raise AdapterCallFailed("; ".join(errors))
        if len(unavailable) == 2:
            raise AdapterUnavailable("; ".join(unavailable))
        return detail


def _delivery_detail(result: DeliveryResult) -> dict[str, Any]:
    if result.skipped:
        raise AdapterUnavailable(result.error or f"Channel {result.channel} is not configured")
    if not result.success:
        raise AdapterCallFailed(result.error or "webhook delivery failed", status_code=result.status_code)
    return {"channel": result.channel, "request_id": result.request_id, "attempts": result.attempts}


def _transition_detail(result: TransitionResult) -> dict[str, Any]:
    if not result.success:
        raise RuntimeError(result.error or "project transition failed")
    project = result.project
    return {
        "project_id": project.id if project else None,
        "status": project.status if project else None,
        "phases": result.phases,
    }


def _duration_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()
