"""Test doubles shared by the test modules."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from audit_orchestrator.app.http import HttpResponse
from audit_orchestrator.app.models import GenerationResult


@dataclass
class RecordedCall:
    method: str
    url: str
    body: bytes | None
    headers: dict[str, str]
    timeout_s: float

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


class FakeTransport:
    """Test-only transport: records requests and answers from a script or a responder."""

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self._script: list[HttpResponse | Exception] = []
        self.responder: Callable[[str, str, Any], HttpResponse | Exception] = lambda method, url, body: HttpResponse(
            status=200, body="{}"
        )

    def script(self, outcomes: list[HttpResponse | Exception]) -> FakeTransport:
        self._script = list(outcomes)
        return self

    def request(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout_s: float,
    ) -> HttpResponse:
        call = RecordedCall(method, url, body, dict(headers or {}), timeout_s)
        self.calls.append(call)
        outcome = self._script.pop(0) if self._script else self.responder(method, url, call.json())
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass
class FakeGenerator:
    """Test-only content generator returning canned answers in order."""

    answers: list[GenerationResult] = field(default_factory=list)
    available: bool = True
    prompts: list[str] = field(default_factory=list)

    def generate(self, prompt: str, *, temperature: float | None = None, max_tokens: int | None = None) -> GenerationResult:
        self.prompts.append(prompt)
        if self.answers:
            return self.answers.pop(0)
        return GenerationResult(status="failed", error="no canned answer")


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


