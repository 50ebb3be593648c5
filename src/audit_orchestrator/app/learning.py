"""Execution history and per-pattern success statistics."""

from __future__ import annotations

import json
import threading
from collections import deque
from datetime import UTC, datetime
from typing import Any

from .models import Action, Analysis, ExecutionRecord, ExecutionResult, PatternStats

INPUT_EXCERPT_CHARS = 500
RECENT_EXECUTIONS = 10


def success_rate(results: list[ExecutionResult]) -> float:
    # No results means nothing failed.
    if not results:
        return 1.0
    completed = sum(1 for result in results if result.status == "completed")
    return completed / len(results)


class LearningStore:
    def __init__(self, *, enabled: bool = True, history_limit: int = 100) -> None:
        self.enabled = enabled
        self._history: deque[ExecutionRecord] = deque(maxlen=history_limit)
        self._patterns: dict[tuple[str, str], PatternStats] = {}
        self._lock = threading.Lock()

    def record(
        self,
        *,
        request_id: str,
        request: Any,
        analysis: Analysis,
        actions: list[Action],
        results: list[ExecutionResult],
    ) -> ExecutionRecord | None:
        if not self.enabled:
            return None
        rate = success_rate(results)
        record = ExecutionRecord(
            request_id=request_id,
            timestamp=datetime.now(UTC),
            input_excerpt=json.dumps(request, default=str, ensure_ascii=False)[:INPUT_EXCERPT_CHARS],
            analysis_type=analysis.type,
            analysis_priority=analysis.priority,
            actions_count=len(actions),
            success_rate=rate,
            confidence=analysis.confidence,
        )
        key = (analysis.type, analysis.priority)
        with self._lock:
            self._history.append(record)
            pattern = self._patterns.get(key)
            if pattern is None:
                pattern = PatternStats(analysis_type=analysis.type, priority=analysis.priority)
                self._patterns[key] = pattern
            pattern.count += 1
            pattern.avg_success_rate += (rate - pattern.avg_success_rate) / pattern.count
        return record

    def pattern(self, analysis_type: str, priority: str) -> PatternStats | None:
        with self._lock:
            found = self._patterns.get((analysis_type, priority))
            return found.model_copy() if found else None

    def execution_count(self) -> int:
        with self._lock:
            return len(self._history)

    def pattern_count(self) -> int:
        with self._lock:
            return len(self._patterns)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            history = list(self._history)
            patterns = {
                f"{analysis_type}_{priority}": stats.model_dump()
                for (analysis_type, priority), stats in self._patterns.items()
            }
        return {
            "learning_enabled": self.enabled,
            "total_executions": len(history),
            "patterns": patterns,
            "recent_executions": [record.model_dump(mode="json") for record in history[-RECENT_EXECUTIONS:]],
        }
