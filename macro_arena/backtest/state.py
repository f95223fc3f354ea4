"""Run-scoped mutable state owned by the simulation loop."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from macro_arena.models import ForecastResult, JudgeResult, PerformanceRecord, TickResult


class ModelStatus(str, Enum):
    ACTIVE = "active"
    FAILED = "failed"


def _recent(items: list, limit: int) -> list:
    if limit <= 0:
        return []
    return items[-limit:]


@dataclass
class ModelRecord:
    """Rolling history and participation status for one forecaster."""

    forecaster_id: str
    status: ModelStatus = ModelStatus.ACTIVE
    error: str | None = None
    feedback_history: list[str] = field(default_factory=list)
    performance_history: list[PerformanceRecord] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status is ModelStatus.ACTIVE

    def mark_failed(self, message: str) -> bool:
        """Move to FAILED for the rest of the run. Returns False if already failed."""
        if self.status is ModelStatus.FAILED:
            return False
        self.status = ModelStatus.FAILED
        self.error = message
        return True

    def record_evaluation(
        self, forecast: ForecastResult, actual: float, evaluation: JudgeResult
    ) -> None:
        self.feedback_history.append(evaluation.feedback)
        self.performance_history.append(
            PerformanceRecord(
                prediction=forecast.prediction,
                actual=actual,
                error=evaluation.error,
            )
        )

    def recent_feedback(self, limit: int) -> list[str]:
        return _recent(self.feedback_history, limit)

    def recent_performance(self, limit: int) -> list[PerformanceRecord]:
        return _recent(self.performance_history, limit)


@dataclass
class RunState:
    models: dict[str, ModelRecord] = field(default_factory=dict)
    tick_results: list[TickResult] = field(default_factory=list)

    @classmethod
    def for_models(cls, model_ids: Iterable[str]) -> "RunState":
        return cls(models={model_id: ModelRecord(model_id) for model_id in model_ids})

    def active_models(self) -> list[ModelRecord]:
        return [record for record in self.models.values() if record.is_active]

    def errors(self) -> dict[str, str]:
        return {
            model_id: record.error
            for model_id, record in self.models.items()
            if record.error is not None
        }
