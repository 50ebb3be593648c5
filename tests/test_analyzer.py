from __future__ import annotations

import json

import pytest
from fakes import FakeGenerator

from audit_orchestrator.app.analyzer import RequestAnalyzer, extract_json_object, heuristic_analysis
from audit_orchestrator.app.errors import MalformedResponse
from audit_orchestrator.app.llm import UnconfiguredGenerator
from audit_orchestrator.app.models import GenerationResult


def _answer(payload: dict) -> GenerationResult:
    return GenerationResult(status="generated", text=f"Here is the analysis:\n{json.dumps(payload)}\nLet me know.")


def test_generator_answer_is_parsed_and_normalized() -> None:
    generator = FakeGenerator(
        answers=[
            _answer(
                {
                    "type": "Audit",
                    "priority": "URGENT",
                    "category": "fraud",
                    "complexity": "complex",
                    "urgency": "immediate",
                    "risk_level": "14",
                    "required_actions": "create_task",
                    "confidence": "0.92",
                    "entities": {"client": "ACME", "unexpected": "x"},
                }
            )
        ]
    )

    analysis = RequestAnalyzer(generator).analyze({"message": "possible fraud at ACME"})

    assert analysis.source == "llm"
    assert analysis.type == "audit"
    assert analysis.priority == "critical"
    assert analysis.risk_level == 10
    assert analysis.confidence == pytest.approx(0.92)
    assert analysis.required_actions == ["create_task"]
    assert analysis.entities.client == "ACME"
    assert "possible fraud at ACME" in generator.prompts[0]


def test_answer_without_confidence_falls_back_to_heuristic() -> None:
    generator = FakeGenerator(answers=[_answer({"type": "audit", "risk_level": 7})])

    analysis = RequestAnalyzer(generator).analyze({"message": "audit please"})

    assert analysis.source == "heuristic"
    assert analysis.confidence == 0.5
    assert analysis.risk_level == 5


@pytest.mark.parametrize(
    "answer",
    [
        GenerationResult(status="generated", text="I cannot help with that."),
        GenerationResult(status="generated", text="{not json at all}"),
        GenerationResult(status="failed", error="HTTP 500"),
    ],
)
def test_unusable_answers_fall_back_to_heuristic(answer: GenerationResult) -> None:
    analysis = RequestAnalyzer(FakeGenerator(answers=[answer])).analyze({"message": "report for Q3"})

    assert analysis.source == "heuristic"
    assert analysis.type == "report"


def test_unconfigured_generator_uses_heuristic_defaults() -> None:
    analysis = RequestAnalyzer(UnconfiguredGenerator()).analyze({"message": "hello"})

    assert analysis.source == "heuristic"
    assert analysis.type == "task"
    assert analysis.priority == "medium"
    assert analysis.category == "operational"
    assert analysis.complexity == "moderate"
    assert analysis.urgency == "within_days"
    assert analysis.required_actions == ["create_task", "notify_team"]
    assert analysis.suggested_workflow == "standard"
    assert analysis.estimated_duration_minutes == 60
    assert analysis.confidence == 0.5
    assert analysis.risk_level == 5


def test_heuristic_scans_keywords_and_lifts_entities() -> None:
    analysis = heuristic_analysis(
        {"message": "URGENT forensic audit needed", "client": "ACME", "deadline": "2026-11-01"}
    )

    assert analysis.type == "audit"
    assert analysis.priority == "high"
    assert analysis.category == "forensic"
    assert analysis.entities.client == "ACME"
    assert analysis.entities.deadline == "2026-11-01"
    assert set(analysis.keywords) == {"audit", "urgent", "forensic"}


def test_heuristic_is_total_for_unusual_input() -> None:
    class Opaque:
        pass

    for request in ({}, {"nested": {"obj": Opaque()}}, {"numbers": [1, 2, 3]}):
        analysis = heuristic_analysis(request)
        assert analysis.source == "heuristic"
        assert analysis.confidence == 0.5


def test_extract_json_object_uses_outermost_braces() -> None:
    assert extract_json_object('prefix {"a": {"b": 1}} suffix') == {"a": {"b": 1}}
    with pytest.raises(MalformedResponse):
        extract_json_object("no braces here")
    with pytest.raises(MalformedResponse):
        extract_json_object("} reversed {")
