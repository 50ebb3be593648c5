from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import AdapterCallFailed, AdapterUnavailable, MalformedResponse
from .llm import ContentGenerator
from .models import Analysis, AnalysisEntities

logger = logging.getLogger(__name__)

_VALID_PRIORITIES = {"critical", "high", "medium", "low"}
_PRIORITY_ALIASES = {"urgent": "critical"}

HEURISTIC_TYPE_SIGNALS: tuple[tuple[str, str], ...] = (
    ("audit", "audit"),
    ("report", "report"),
)
HEURISTIC_HIGH_PRIORITY_SIGNALS = ("urgent", "critical")
HEURISTIC_CATEGORY_SIGNALS: tuple[tuple[str, str], ...] = (("forensic", "forensic"),)

ANALYSIS_PROMPT = """Analyze the following request for a forensic audit and consultancy firm.

REQUEST:
{request}

Answer with a single JSON object and nothing else, using exactly these keys:
{{
  "type": "audit | report | task | alert | consultation | other",
  "priority": "critical | high | medium | low",
  "category": "forensic | compliance | financial | legal | operational | security_breach | fraud | other",
  "complexity": "simple | moderate | complex",
  "urgency": "immediate | within_hours | within_days | flexible",
  "risk_level": 1-10,
  "required_actions": ["create_task", "notify_team", "generate_content", ...],
  "suggested_workflow": "alpha | omega | standard | escalation",
  "estimated_duration_minutes": number,
  "confidence": 0.0-1.0,
  "keywords": ["..."],
  "entities": {{"client": "...", "project": "...", "deadline": "..."}},
  "reasoning": "short explanation"
}}"""


class _LLMAnalysis(BaseModel):
    """Lenient view of the generator's JSON; confidence and risk_level are mandatory."""

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    type: str = "task"
    priority: str = "medium"
    category: str = "operational"
    complexity: str = "moderate"
    urgency: str = "within_days"
    risk_level: float
    required_actions: list[str] = Field(default_factory=list)
    suggested_workflow: str = "standard"
    estimated_duration_minutes: float = 60
    confidence: float
    keywords: list[str] = Field(default_factory=list)
    entities: dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""

    @field_validator("type", "priority", "category", "complexity", "urgency", "suggested_workflow", mode="before")
    @classmethod
    def _normalize_label(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip().lower().replace(" ", "_")
        return value

    @field_validator("required_actions", "keywords", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value] if isinstance(value, list) else value

    @field_validator("entities", mode="before")
    @classmethod
    def _coerce_entities(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the span between the first '{' and the last '}' of a model answer."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedResponse("No JSON object found in generator response")
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedResponse(f"Generator response is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise MalformedResponse("Generator response JSON is not an object")
    return parsed


def parse_analysis(text: str) -> Analysis:
    payload = extract_json_object(text)
    try:
        raw = _LLMAnalysis.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponse(f"Generator analysis failed validation: {exc.error_count()} error(s)") from exc

    priority = _PRIORITY_ALIASES.get(raw.priority, raw.priority)
    if priority not in _VALID_PRIORITIES:
        priority = "medium"
    entities = {key: str(value) for key, value in raw.entities.items() if key in {"client", "project", "deadline"} and value}
    return Analysis(
        type=raw.type or "task",
        priority=priority,
        category=raw.category or "operational",
        complexity=raw.complexity or "moderate",
        urgency=raw.urgency or "within_days",
        risk_level=min(10, max(1, round(raw.risk_level))),
        required_actions=raw.required_actions,
        suggested_workflow=raw.suggested_workflow or "standard",
        estimated_duration_minutes=max(0, int(raw.estimated_duration_minutes)),
        confidence=min(1.0, max(0.0, raw.confidence)),
        keywords=raw.keywords,
        entities=AnalysisEntities(**entities),
        reasoning=raw.reasoning,
        source="llm",
    )


def heuristic_analysis(request: Any) -> Analysis:
    """Keyword scan over the serialized request. Total: never raises."""
    try:
        serialized = json.dumps(request, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        serialized = repr(request)
    lowered = serialized.lower()

    analysis_type = next((label for signal, label in HEURISTIC_TYPE_SIGNALS if signal in lowered), "task")
    priority = "high" if any(signal in lowered for signal in HEURISTIC_HIGH_PRIORITY_SIGNALS) else "medium"
    category = next((label for signal, label in HEURISTIC_CATEGORY_SIGNALS if signal in lowered), "operational")
    keywords = [
        signal
        for signal in (*(s for s, _ in HEURISTIC_TYPE_SIGNALS), *HEURISTIC_HIGH_PRIORITY_SIGNALS, *(s for s, _ in HEURISTIC_CATEGORY_SIGNALS))
        if signal in lowered
    ]

    entities: dict[str, str] = {}
    if isinstance(request, dict):
        for key in ("client", "project", "deadline"):
            value = request.get(key)
            if isinstance(value, (str, int, float)) and str(value).strip():
                entities[key] = str(value)

    return Analysis(
        type=analysis_type,
        priority=priority,
        category=category,
        complexity="moderate",
        urgency="within_days",
        risk_level=5,
        required_actions=["create_task", "notify_team"],
        suggested_workflow="standard",
        estimated_duration_minutes=60,
        confidence=0.5,
        keywords=keywords,
        entities=AnalysisEntities(**entities),
        reasoning="Keyword heuristic; content generation was unavailable or returned an unusable answer.",
        source="heuristic",
    )


class RequestAnalyzer:
    def __init__(self, generator: ContentGenerator, *, temperature: float = 0.2, max_tokens: int = 1200) -> None:
        self.generator = generator
        self.temperature = temperature
        self.max_tokens = max_tokens

    def analyze(self, request: dict[str, Any]) -> Analysis:
        try:
            return self._analyze_with_generator(request)
        except (AdapterUnavailable, AdapterCallFailed, MalformedResponse) as exc:
            logger.warning("Request analysis fell back to heuristic. reason=%s", exc)
            return heuristic_analysis(request)

    def _analyze_with_generator(self, request: dict[str, Any]) -> Analysis:
        if not self.generator.available:
            raise AdapterUnavailable("Content generation is not configured")
        prompt = ANALYSIS_PROMPT.format(request=json.dumps(request, indent=2, default=str, ensure_ascii=False))
        result = self.generator.generate(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        if result.status == "not_configured":
            raise AdapterUnavailable(result.error or "Content generation is not configured")
        if result.status == "failed":
            raise AdapterCallFailed(result.error or "Content generation failed")
        return parse_analysis(result.text)
