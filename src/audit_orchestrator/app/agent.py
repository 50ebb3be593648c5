"""Orchestrator agent: owns the pipeline, operating mode and adapter wiring.

Terms used in this file:
- Mode: autonomous executes validated actions, supervised also holds actions that
  need approval, manual executes nothing.
- Pipeline: the LangGraph graph built in `pipeline.py`.
"""

from __future__ import annotations

import logging
import random
import string
import threading
import time
from typing import Any, get_args

from audit_orchestrator.config.settings import Settings

from .analyzer import RequestAnalyzer
from .decision import DecisionEngine, DecisionRules
from .executor import ActionExecutor
from .http import HttpTransport
from .learning import LearningStore
from .lifecycle import ProjectLifecycle, ProjectStore
from .llm import ContentGenerator, ContentService, build_content_generator
from .models import AgentMode, PipelineResult
from .pipeline import build_pipeline, initial_state
from .task_tracker import TaskTrackerClient
from .validation import ValidationGate
from .webhooks import WebhookDelivery

logger = logging.getLogger(__name__)

AGENT_MODES: tuple[str, ...] = get_args(AgentMode)


def new_request_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"SA-{int(time.time() * 1000)}-{suffix}"


class OrchestratorAgent:
    def __init__(
        self,
        *,
        analyzer: RequestAnalyzer,
        engine: DecisionEngine,
        gate: ValidationGate,
        executor: ActionExecutor,
        webhooks: WebhookDelivery,
        tracker: TaskTrackerClient,
        content: ContentService,
        lifecycle: ProjectLifecycle,
        learning: LearningStore,
        mode: str = "autonomous",
    ) -> None:
        self.analyzer = analyzer
        self.engine = engine
        self.gate = gate
        self.executor = executor
        self.webhooks = webhooks
        self.tracker = tracker
        self.content = content
        self.lifecycle = lifecycle
        self.learning = learning
        self._lock = threading.Lock()
        self._mode = "autonomous"
        self.set_mode(mode)
        self._graph = build_pipeline(
            analyzer=analyzer,
            engine=engine,
            gate=gate,
            executor=executor,
            webhooks=webhooks,
            learning=learning,
        )

    @property
    def mode(self) -> str:
        with self._lock:
            return self._mode

    def set_mode(self, mode: str) -> str:
        normalized = str(mode).strip().lower()
        if normalized not in AGENT_MODES:
            raise ValueError(f"Invalid mode {mode!r}; expected one of {', '.join(AGENT_MODES)}")
        with self._lock:
            self._mode = normalized
        logger.info("agent event=mode_changed mode=%s", normalized)
        return normalized

    def set_confidence_threshold(self, threshold: float) -> float:
        self.gate.threshold = threshold
        logger.info("agent event=threshold_changed threshold=%.2f", self.gate.threshold)
        return self.gate.threshold

    def process_request(self, request: dict[str, Any]) -> PipelineResult:
        """Run the full pipeline. Never raises; failures come back in the result."""
        request_id = new_request_id()
        mode = self.mode
        started = time.perf_counter()
        logger.info("pipeline event=start request_id=%s mode=%s", request_id, mode)
        try:
            final_state = self._graph.invoke(initial_state(request_id, request, mode))
        except Exception as exc:  # noqa: BLE001
            logger.exception("pipeline event=failed request_id=%s", request_id)
            return PipelineResult(
                success=False,
                request_id=request_id,
                agent_mode=mode,  # type: ignore[arg-type]
                execution_time_ms=_duration_ms(started),
                error=str(exc),
                fallback_action="manual_review_required",
            )

        result = PipelineResult(
            success=True,
            request_id=request_id,
            agent_mode=mode,  # type: ignore[arg-type]
            execution_time_ms=_duration_ms(started),
            analysis=final_state.get("analysis"),
            actions=final_state.get("actions", []),
            results=final_state.get("results", []),
            sync=final_state.get("sync"),
        )
        logger.info(
            "pipeline event=completed request_id=%s source=%s actions=%d duration_ms=%d",
            request_id,
            result.analysis.source if result.analysis else "none",
            len(result.actions),
            result.execution_time_ms,
        )
        return result

    def get_status(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "is_active": self.mode != "manual",
            "queue_length": self.webhooks.queue_length(),
            "confidence_threshold": self.gate.threshold,
            "learning_enabled": self.learning.enabled,
            "execution_count": self.learning.execution_count(),
            "patterns_learned": self.learning.pattern_count(),
            "adapter_availability": {
                "content_generation": self.content.available,
                "task_tracker": self.tracker.available,
                "webhook_channels": sorted(self.webhooks.urls),
            },
        }

    def get_config(self) -> dict[str, Any]:
        rules = self.gate.rules
        return {
            "mode": self.mode,
            "confidence_threshold": self.gate.threshold,
            "learning_enabled": self.learning.enabled,
            "rules": {
                "high_priority": sorted(rules.high_priority),
                "auto_approve": sorted(rules.auto_approve),
                "requires_review": sorted(rules.requires_review),
                "escalation": sorted(rules.escalation),
            },
        }

    def learning_stats(self) -> dict[str, Any]:
        return self.learning.stats()


def build_agent(
    settings: Settings,
    *,
    generator: ContentGenerator | None = None,
    transport: HttpTransport | None = None,
    sleep: Any = time.sleep,
) -> OrchestratorAgent:
    """Wire every component from settings. Overrides exist for tests."""
    if generator is None:
        generator = build_content_generator(
            provider=settings.llm_provider,
            api_key=settings.resolved_openai_api_key(),
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            timeout_s=settings.llm_timeout_s,
            max_retries=settings.llm_max_retries,
            backoff_s=settings.llm_backoff_s,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            transport=transport,
        )
    content = ContentService(generator)
    tracker = TaskTrackerClient(
        api_token=settings.resolved_tracker_token(),
        base_url=settings.tracker_base_url,
        workspace_id=settings.tracker_workspace_id,
        default_list_id=settings.tracker_default_list_id,
        timeout_s=settings.tracker_timeout_s,
        cache_ttl_s=settings.tracker_cache_ttl_s,
        transport=transport,
    )
    webhooks = WebhookDelivery(
        urls=settings.webhook_urls,
        secret=settings.resolved_webhook_secret(),
        transport=transport,
        timeout_s=settings.webhook_timeout_s,
        max_retries=settings.webhook_max_retries,
        pacing_s=settings.webhook_queue_pacing_s,
        signature_header=settings.webhook_signature_header,
        source=settings.webhook_source,
        version=settings.webhook_version,
        sleep=sleep,
    )
    lifecycle = ProjectLifecycle(
        store=ProjectStore(archive_limit=settings.archive_limit),
        tracker=tracker,
        webhooks=webhooks,
        content=content,
        pacing_s=settings.tracker_pacing_s,
        sleep=sleep,
    )
    rules = DecisionRules()
    return OrchestratorAgent(
        analyzer=RequestAnalyzer(generator),
        engine=DecisionEngine(rules=rules),
        gate=ValidationGate(threshold=settings.confidence_threshold, rules=rules),
        executor=ActionExecutor(tracker=tracker, webhooks=webhooks, content=content, lifecycle=lifecycle),
        webhooks=webhooks,
        tracker=tracker,
        content=content,
        lifecycle=lifecycle,
        learning=LearningStore(enabled=settings.learning_enabled, history_limit=settings.history_limit),
        mode=settings.agent_mode,
    )


def _duration_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
