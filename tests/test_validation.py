from __future__ import annotations

import pytest

from audit_orchestrator.app.decision import DecisionEngine
from audit_orchestrator.app.models import Analysis
from audit_orchestrator.app.validation import ValidationGate


def _validated(analysis: Analysis, threshold: float = 0.75):
    actions = DecisionEngine().decide(analysis)
    return actions, ValidationGate(threshold=threshold).validate(actions, analysis)


def test_low_confidence_requires_manual_review() -> None:
    actions, validated = _validated(Analysis(type="audit", priority="high", confidence=0.6))

    assert len(validated) == len(actions)
    assert all(action.validated is False for action in validated)
    assert {action.validation_method for action in validated} == {"requires_manual_review"}
    assert all(action.validated is False for action in actions)


def test_confident_analysis_is_validated_automatically() -> None:
    _, validated = _validated(Analysis(type="audit", priority="high", confidence=0.9))

    assert all(action.validated for action in validated)
    assert {action.validation_method for action in validated} == {"automatic"}


def test_review_required_category_flags_approval() -> None:
    _, validated = _validated(Analysis(type="task", category="legal", confidence=0.9))

    assert all(action.approval_required for action in validated)
    assert {action.validation_method for action in validated} == {"requires_approval"}


def test_auto_approve_overrides_low_confidence() -> None:
    _, validated = _validated(
        Analysis(type="task", priority="low", complexity="simple", confidence=0.1, required_actions=["create_task"])
    )

    assert validated[0].validated is True
    assert validated[0].validation_method == "auto_approved"


def test_threshold_bounds() -> None:
    gate = ValidationGate()
    gate.threshold = 0.5
    assert gate.threshold == 0.5
    with pytest.raises(ValueError):
        gate.threshold = 1.5
    with pytest.raises(ValueError):
        ValidationGate(threshold=-0.1)
