"""Backtest configuration, per-tick results and the final benchmark report."""
from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from macro_arena.models.forecast import ForecastResult, JudgeResult
from macro_arena.models.tick import Tick

ID_SEPARATOR = "::"


class ForecasterId(BaseModel):
    """Compound ``provider::model`` key identifying one connected model."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str

    @classmethod
    def parse(cls, value: str) -> ForecasterId:
        provider, sep, model = value.partition(ID_SEPARATOR)
        if not sep or not provider.strip() or not model.strip():
            raise ValueError(
                f"Model id '{value}' must have the form 'provider{ID_SEPARATOR}model'"
            )
        return cls(provider=provider.strip(), model=model.strip())

    def __str__(self) -> str:
        return f"{self.provider}{ID_SEPARATOR}{self.model}"


class BacktestConfig(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    forecasters: list[str] = Field(default_factory=list)
    judge_model: str = ""
    forecast_prompt: str
    judge_prompt: str
    feedback_limit: int = Field(default=5, ge=0)
    max_predictions: int = Field(default=50, ge=1)
    # Setup-time concern, carried for the caller
    skip_predicted_ticks: bool = False

    @field_validator("forecasters")
    @classmethod
    def validate_forecaster_ids(cls, v: list[str]) -> list[str]:
        for model_id in v:
            ForecasterId.parse(model_id)
        if len(set(v)) != len(v):
            raise ValueError("Forecaster ids must be unique")
        return v

    @classmethod
    def from_selections(
        cls,
        llm_selections: dict[str, list[str]],
        **kwargs,
    ) -> BacktestConfig:
        forecasters = [
            f"{provider}{ID_SEPARATOR}{model}"
            for provider, models in llm_selections.items()
            for model in models
        ]
        return cls(forecasters=forecasters, **kwargs)


class TickResult(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    tick_index: int
    tick_data: Tick
    forecasts: dict[str, ForecastResult]
    evaluations: dict[str, JudgeResult]


class ModelBenchmark(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    model_id: str
    model_name: str
    provider: str
    completion_rate: float = 0.0
    directional_accuracy: float = 0.0
    rmse: float = 0.0
    brier_score: float = 0.0
    avg_confidence: float = 0.0
    composite_score: float = 0.0
    predictions: int = 0


class ExcludedModel(ModelBenchmark):
    reason: Literal["Insufficient Coverage", "Failed"]
    message: str | None = None
    total_ticks: int = 0


class BacktestResults(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    composite_score: float = 0.0
    overall_directional_accuracy: float = 0.0
    overall_magnitude_rmse: float = 0.0
    overall_avg_confidence: float = 0.0
    top_performers: list[ModelBenchmark] = Field(default_factory=list)
    excluded_models: list[ExcludedModel] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return not self.top_performers


class StopReason(str, Enum):
    COMPLETED = "completed"
    NO_GROUND_TRUTH = "no_ground_truth"
    CANCELLED = "cancelled"


class BacktestOutcome(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    results: BacktestResults
    tick_results: list[TickResult]
    errors: dict[str, str] = Field(default_factory=dict)
    stop_reason: StopReason = StopReason.COMPLETED
