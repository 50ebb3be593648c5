from __future__ import annotations

from .decision import DecisionRules
from .models import Action, Analysis


class ValidationGate:
    """Annotates proposed actions with validation metadata; never drops one.

    Checks run in order: confidence threshold, review-required category, then the
    auto-approve override, so a low-priority simple request is approved even when
    confidence is below the threshold.
    """

    def __init__(self, *, threshold: float = 0.75, rules: DecisionRules | None = None) -> None:
        self.rules = rules or DecisionRules()
        self._threshold = 0.75
        self.threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        value = float(value)
        if not 0.0 <= value <= 1.0:
            raise ValueError("confidence threshold must be between 0 and 1")
        self._threshold = value

    def validate(self, actions: list[Action], analysis: Analysis) -> list[Action]:
        return [self._annotate(action, analysis) for action in actions]

    def _annotate(self, action: Action, analysis: Analysis) -> Action:
        validated = True
        method = "automatic"
        approval_required = False
        reason: str | None = None

        if analysis.confidence < self._threshold:
            validated = False
            method = "requires_manual_review"
            reason = f"confidence {analysis.confidence:.2f} below threshold {self._threshold:.2f}"

        if analysis.category in self.rules.requires_review:
            method = "requires_approval"
            approval_required = True
            reason = reason or f"category {analysis.category} requires approval"

        if analysis.priority in self.rules.auto_approve and analysis.complexity == "simple":
            validated = True
            method = "auto_approved"

        return action.model_copy(
            update={
                "validated": validated,
                "validation_method": method,
                "approval_required": approval_required,
                "reason": reason,
            }
        )
