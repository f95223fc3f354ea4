from macro_arena.backtest.scoring import PARTICIPATION_THRESHOLD, calculate_aggregate_scores
from macro_arena.backtest.state import ModelRecord, ModelStatus, RunState
from macro_arena.backtest.runner import BacktestRunner, run_backtest

__all__ = [
    "PARTICIPATION_THRESHOLD",
    "calculate_aggregate_scores",
    "ModelRecord",
    "ModelStatus",
    "RunState",
    "BacktestRunner",
    "run_backtest",
]
