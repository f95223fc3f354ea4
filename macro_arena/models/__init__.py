from macro_arena.models.tick import Observation, PeerObservation, Tick
from macro_arena.models.forecast import ForecastResult, JudgeResult, PerformanceRecord
from macro_arena.models.backtest import (
    BacktestConfig,
    BacktestOutcome,
    BacktestResults,
    ExcludedModel,
    ForecasterId,
    ModelBenchmark,
    StopReason,
    TickResult,
)

__all__ = [
    "Observation",
    "PeerObservation",
    "Tick",
    "ForecastResult",
    "JudgeResult",
    "PerformanceRecord",
    "BacktestConfig",
    "BacktestOutcome",
    "BacktestResults",
    "ExcludedModel",
    "ForecasterId",
    "ModelBenchmark",
    "StopReason",
    "TickResult",
]
