"""ClickUp-shaped task tracking client with a TTL cache for the workspace hierarchy."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from .errors import AdapterCallFailed, AdapterUnavailable, MalformedResponse
from .http import HttpConnectionError, HttpStatusError, HttpTimeout, HttpTransport, UrllibTransport, with_query
from .models import CreatedTask, TaskDraft

logger = logging.getLogger(__name__)


class TaskTrackerClient:
    def __init__(
        self,
        *,
        api_token: str,
        base_url: str = "https://api.clickup.com/api/v2",
        workspace_id: str = "",
        default_list_id: str = "",
        timeout_s: float = 10.0,
        cache_ttl_s: float = 300.0,
        transport: HttpTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.workspace_id = workspace_id
        self.default_list_id = default_list_id
        self.timeout_s = timeout_s
        self.cache_ttl_s = cache_ttl_s
        self.transport = transport or UrllibTransport()
        self._clock = clock
        self._cache: dict[str, tuple[float, Any]] = {}
        self._cache_lock = threading.Lock()

    @property
    def available(self) -> bool:
        return bool(self.api_token)

    # Hierarchy reads (cached).

    def get_workspaces(self) -> list[dict[str, Any]]:
        return self._cached("workspaces", lambda: self._request("GET", "/team").get("teams", []))

    def get_spaces(self, team_id: str | None = None) -> list[dict[str, Any]]:
        team_id = team_id or self.workspace_id
        if not team_id:
            raise ValueError("team_id is required when no default workspace is configured")
        return self._cached(
            f"spaces_{team_id}",
            lambda: self._request("GET", f"/team/{team_id}/space", params={"archived": False}).get("spaces", []),
        )

    def get_lists(self, space_id: str) -> list[dict[str, Any]]:
        return self._cached(
            f"lists_{space_id}",
            lambda: self._request("GET", f"/space/{space_id}/list", params={"archived": False}).get("lists", []),
        )

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
        logger.info("task tracker event=cache_cleared")

    # Tasks.

    def create_task(self, draft: TaskDraft, *, list_id: str | None = None, parent: str | None = None) -> CreatedTask:
        target_list = list_id or self.default_list_id
        if not target_list:
            if not self.available:
                raise AdapterUnavailable("CLICKUP_API_TOKEN is not set")
            raise AdapterUnavailable("No task list configured; set AUDIT_ORCHESTRATOR_TRACKER_DEFAULT_LIST_ID")
        body: dict[str, Any] = {
            "name": draft.name,
            "description": draft.description,
            "priority": draft.priority,
            "tags": draft.tags,
            "assignees": draft.assignees,
            "status": draft.status,
            "due_date": int(draft.due_date.timestamp() * 1000) if draft.due_date else None,
            "parent": parent,
        }
        body = {key: value for key, value in body.items() if value is not None}
        created = self._request("POST", f"/list/{target_list}/task", body=body)
        task_id = created.get("id")
        if not task_id:
            raise MalformedResponse("Task tracker response did not include a task id")
        logger.info("task tracker event=task_created task_id=%s list_id=%s parent=%s", task_id, target_list, parent)
        return CreatedTask(task_id=str(task_id), url=created.get("url"), name=created.get("name"))

    def create_subtask(self, parent_task_id: str, draft: TaskDraft) -> CreatedTask:
        parent = self.get_task(parent_task_id)
        list_id = (parent.get("list") or {}).get("id")
        if not list_id:
            raise MalformedResponse(f"Parent task {parent_task_id} has no list reference")
        return self.create_task(draft, list_id=str(list_id), parent=parent_task_id)

    def update_task(self, task_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return self._request("PUT", f"/task/{task_id}", body=updates)

    def get_task(self, task_id: str) -> dict[str, Any]:
        return self._request("GET", f"/task/{task_id}")

    def list_tasks(
        self,
        list_id: str | None = None,
        *,
        archived: bool = False,
        page: int = 0,
        order_by: str = "created",
        reverse: bool = True,
        subtasks: bool = True,
        statuses: list[str] | None = None,
        include_closed: bool = False,
    ) -> list[dict[str, Any]]:
        target_list = list_id or self.default_list_id
        if not target_list:
            raise ValueError("list_id is required when no default list is configured")
        params: dict[str, Any] = {
            "archived": archived,
            "page": page,
            "order_by": order_by,
            "reverse": reverse,
            "subtasks": subtasks,
            "include_closed": include_closed,
            "statuses": statuses or None,
        }
        return self._request("GET", f"/list/{target_list}/task", params=params).get("tasks", [])

    def search_tasks(self, query: str, list_id: str | None = None) -> list[dict[str, Any]]:
        lowered = query.lower()
        return [
            task
            for task in self.list_tasks(list_id, include_closed=True)
            if lowered in str(task.get("name", "")).lower() or lowered in str(task.get("description", "")).lower()
        ]

    def add_comment(self, task_id: str, text: str, *, notify_all: bool = False) -> dict[str, Any]:
        return self._request("POST", f"/task/{task_id}/comment", body={"comment_text": text, "notify_all": notify_all})

    def check_connection(self) -> dict[str, Any]:
        try:
            user = self._request("GET", "/user").get("user", {})
        except (AdapterUnavailable, AdapterCallFailed, MalformedResponse) as exc:
            return {"connected": False, "error": str(exc)}
        return {"connected": True, "user": user.get("username"), "email": user.get("email")}

    # Internals.

    def _cached(self, key: str, loader: Callable[[], Any]) -> Any:
        now = self._clock()
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is not None and now - entry[0] < self.cache_ttl_s:
                return entry[1]
        value = loader()
        with self._cache_lock:
            self._cache[key] = (self._clock(), value)
        return value

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.available:
            raise AdapterUnavailable("CLICKUP_API_TOKEN is not set")
        url = with_query(f"{self.base_url}{path}", params)
        headers = {"Authorization": self.api_token, "Content-Type": "application/json"}
        raw_body = json.dumps(body).encode("utf-8") if body is not None else None
        try:
            response = self.transport.request(method, url, body=raw_body, headers=headers, timeout_s=self.timeout_s)
        except HttpStatusError as exc:
            logger.warning("task tracker event=request_failed method=%s path=%s status=%d", method, path, exc.status)
            raise AdapterCallFailed(
                f"Task tracker {method} {path} failed with HTTP {exc.status}",
                status_code=exc.status,
                retryable=exc.status >= 500 or exc.status == 429,
            ) from exc
        except (HttpTimeout, HttpConnectionError) as exc:
            logger.warning("task tracker event=request_failed method=%s path=%s reason=%s", method, path, exc)
            raise AdapterCallFailed(f"Task tracker {method} {path} failed: {exc}", retryable=True) from exc
        try:
            parsed = response.json()
        except ValueError as exc:
            raise MalformedResponse(f"Task tracker {method} {path} returned non-JSON body") from exc
        if not isinstance(parsed, dict):
            raise MalformedResponse(f"Task tracker {method} {path} returned non-object JSON")
        return parsed
