from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .errors import SignatureMismatch

if TYPE_CHECKING:
    from .agent import OrchestratorAgent

logger = logging.getLogger(__name__)

AGENT_COMMANDS = ("start", "stop", "pause", "resume", "status", "config")


class InboundRouter:
    """Verifies and routes webhook events sent to the orchestrator."""

    def __init__(self, agent: OrchestratorAgent) -> None:
        self.agent = agent
        self.webhooks = agent.webhooks

    def process(self, payload: dict[str, Any], signature: str | None, *, raw_body: bytes | None = None) -> dict[str, Any]:
        try:
            if not self.webhooks.verify(raw_body if raw_body is not None else payload, signature):
                raise SignatureMismatch("Invalid webhook signature")
            self.webhooks.record_received()
            event = str(payload.get("event", "generic"))
            data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
            logger.info("inbound webhook event=%s", event)
            result = self._route(event, data)
        except SignatureMismatch as exc:
            logger.warning("inbound webhook event=rejected reason=%s", exc)
            return {"success": False, "error": str(exc), "reason": "signature"}
        except Exception as exc:  # noqa: BLE001
            logger.exception("inbound webhook event=failed")
            return {"success": False, "error": str(exc)}
        return {"success": True, "event": event, "result": result}

    def _route(self, event: str, data: dict[str, Any]) -> dict[str, Any]:
        match event:
            case "audit_request":
                return {
                    "action": "audit_queued",
                    "audit_type": data.get("audit_type"),
                    "client": data.get("client"),
                    "priority": data.get("priority", "normal"),
                    "queue_position": self.webhooks.queue_length() + 1,
                }
            case "task_update":
                return {
                    "action": "task_update_processed",
                    "task_id": data.get("task_id"),
                    "updates": data.get("updates", {}),
                }
            case "report_request":
                return {
                    "action": "report_queued",
                    "report_type": data.get("report_type"),
                    "format": data.get("format", "markdown"),
                }
            case "sync_request":
                return {"action": "sync_initiated", "agent_status": self.agent.get_status()}
            case "agent_command":
                return self._agent_command(data)
            case _:
                return {"action": "event_logged", "event": event}

    def _agent_command(self, data: dict[str, Any]) -> dict[str, Any]:
        command = str(data.get("command", "")).lower()
        match command:
            case "start" | "resume":
                self.agent.set_mode("autonomous")
            case "stop" | "pause":
                self.agent.set_mode("manual")
            case "status":
                return {"action": "command_executed", "command": command, "status": self.agent.get_status()}
            case "config":
                return {"action": "command_executed", "command": command, "config": self.agent.get_config()}
            case _:
                raise ValueError(f"Unknown agent command {command!r}; expected one of {', '.join(AGENT_COMMANDS)}")
        return {"action": "command_executed", "command": command, "mode": self.agent.mode}
