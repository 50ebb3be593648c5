from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from fakes import FakeGenerator, FakeTransport, SleepRecorder

from audit_orchestrator.app.agent import OrchestratorAgent, build_agent
from audit_orchestrator.config.settings import Settings


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    for name in ("OPENAI_API_KEY", "CLICKUP_API_TOKEN", "WEBHOOK_SECRET"):
        monkeypatch.delenv(name, raising=False)
    return Settings(tracker_pacing_s=0.0, webhook_queue_pacing_s=0.0)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_agent(
    settings: Settings, fake_transport: FakeTransport, sleeps: SleepRecorder
) -> Callable[..., OrchestratorAgent]:
    def _make(generator: FakeGenerator | None = None, **overrides: Any) -> OrchestratorAgent:
        configured = settings.model_copy(update=overrides)
        return build_agent(configured, generator=generator, transport=fake_transport, sleep=sleeps)

    return _make
