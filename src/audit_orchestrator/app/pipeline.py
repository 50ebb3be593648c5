"""LangGraph assembly of the analyze -> decide -> validate -> execute -> sync -> learn pipeline."""

from __future__ import annotations

from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from .analyzer import RequestAnalyzer
from .decision import DecisionEngine
from .executor import ActionExecutor
from .learning import LearningStore
from .models import Action, Analysis, DeliveryResult, ExecutionResult
from .validation import ValidationGate
from .webhooks import WebhookDelivery


class PipelineState(TypedDict, total=False):
    request_id: str
    request: dict[str, Any]
    mode: str
    analysis: Analysis
    actions: list[Action]
    results: list[ExecutionResult]
    sync: DeliveryResult


def initial_state(request_id: str, request: dict[str, Any], mode: str) -> PipelineState:
    return {
        "request_id": request_id,
        "request": dict(request),
        "mode": mode,
        "actions": [],
        "results": [],
    }


def build_pipeline(
    *,
    analyzer: RequestAnalyzer,
    engine: DecisionEngine,
    gate: ValidationGate,
    executor: ActionExecutor,
    webhooks: WebhookDelivery,
    learning: LearningStore,
):
    def analyze(state: PipelineState) -> PipelineState:
        return {"analysis": analyzer.analyze(state["request"])}

    def decide(state: PipelineState) -> PipelineState:
        return {"actions": engine.decide(state["analysis"])}

    def validate(state: PipelineState) -> PipelineState:
        actions = gate.validate(state["actions"], state["analysis"])
        if state.get("mode") == "supervised":
            actions = [
                action.model_copy(update={"validated": False, "reason": "awaiting approval"})
                if action.approval_required and action.validation_method != "auto_approved"
                else action
                for action in actions
            ]
        return {"actions": actions}

    def route(state: PipelineState) -> str:
        return "hold" if state.get("mode") == "manual" else "execute"

    def hold(state: PipelineState) -> PipelineState:
        return {
            "results": [
                ExecutionResult(action=action.kind, status="skipped", detail={"reason": "agent in manual mode"})
                for action in state["actions"]
            ]
        }

    def execute(state: PipelineState) -> PipelineState:
        return {"results": executor.execute(state["actions"], request_id=state["request_id"])}

    def sync(state: PipelineState) -> PipelineState:
        analysis = state["analysis"]
        results = state.get("results", [])
        summary = {
            "type": "execution_completed",
            "request_id": state["request_id"],
            "analysis_type": analysis.type,
            "priority": analysis.priority,
            "analysis_source": analysis.source,
            "results": {
                status: sum(1 for result in results if result.status == status)
                for status in ("completed", "failed", "skipped")
            },
        }
        return {"sync": webhooks.sync_agent_activity(summary)}

    def learn(state: PipelineState) -> PipelineState:
        learning.record(
            request_id=state["request_id"],
            request=state["request"],
            analysis=state["analysis"],
            actions=state.get("actions", []),
            results=state.get("results", []),
        )
        return {}

    graph = StateGraph(PipelineState)

    graph.add_node("analyze", analyze)
    graph.add_node("decide", decide)
    graph.add_node("validate", validate)
    graph.add_node("hold", hold)
    graph.add_node("execute", execute)
    graph.add_node("sync", sync)
    graph.add_node("learn", learn)

    graph.set_entry_point("analyze")
    graph.add_edge("analyze", "decide")
    graph.add_edge("decide", "validate")
    graph.add_conditional_edges("validate", route, {"hold": "hold", "execute": "execute"})
    graph.add_edge("hold", "sync")
    graph.add_edge("execute", "sync")
    graph.add_edge("sync", "learn")
    graph.add_edge("learn", END)

    return graph.compile()
