from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock
from typing import Any


@dataclass
class _GenerationMetrics:
    runs_started: int = 0
    runs_succeeded: int = 0
    runs_failed: int = 0
    runs_cancelled: int = 0
    failures_by_stage: Counter = field(default_factory=Counter)
    retrieval_degradations: Counter = field(default_factory=Counter)


class GenerationMetricsStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._metrics = _GenerationMetrics()

    def record_run_started(self) -> None:
        with self._lock:
            self._metrics.runs_started += 1

    def record_run_succeeded(self) -> None:
        with self._lock:
            self._metrics.runs_succeeded += 1

    def record_run_failed(self, stage: str) -> None:
        with self._lock:
            self._metrics.runs_failed += 1
            self._metrics.failures_by_stage[stage] += 1

    def record_run_cancelled(self) -> None:
        with self._lock:
            self._metrics.runs_cancelled += 1

    def record_retrieval_degradation(self, path: str) -> None:
        with self._lock:
            self._metrics.retrieval_degradations[path] += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            finished = self._metrics.runs_succeeded + self._metrics.runs_failed
            success_ratio = (
                round(self._metrics.runs_succeeded / finished, 4) if finished > 0 else 0.0
            )
            return {
                "runs_started": self._metrics.runs_started,
                "runs_succeeded": self._metrics.runs_succeeded,
                "runs_failed": self._metrics.runs_failed,
                "runs_cancelled": self._metrics.runs_cancelled,
                "success_ratio": success_ratio,
                "failures_by_stage": dict(self._metrics.failures_by_stage),
                "retrieval_degradations": dict(self._metrics.retrieval_degradations),
            }


generation_metrics_store = GenerationMetricsStore()
