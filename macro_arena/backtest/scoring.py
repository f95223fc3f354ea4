"""
Aggregate scoring - turns per-tick results into ranked model benchmarks.

Pure function of its inputs: nothing passed in is mutated.
"""
from dataclasses import dataclass, field
from typing import Mapping, Sequence

import numpy as np
from loguru import logger

from macro_arena.models import (
    BacktestResults,
    ExcludedModel,
    ForecasterId,
    ModelBenchmark,
    Tick,
    TickResult,
)

# Minimum percentage of ticks a model must complete to be ranked
PARTICIPATION_THRESHOLD = 80.0

NO_RESULTS_MESSAGE = "No successful predictions were generated."
NO_OUTPUT_MESSAGE = "Model failed to produce any valid output."

WEIGHT_DIRECTION = 0.4
WEIGHT_RMSE = 0.3
WEIGHT_CONFIDENCE = 0.2
WEIGHT_BRIER = 0.1


@dataclass
class _Series:
    predictions: list[float] = field(default_factory=list)
    confidences: list[float] = field(default_factory=list)
    actuals: list[float] = field(default_factory=list)
    prev_actuals: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.predictions)


def _split_id(model_id: str) -> tuple[str, str]:
    try:
        parsed = ForecasterId.parse(model_id)
    except ValueError:
        return model_id, model_id
    return parsed.provider, parsed.model


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _failed_model(model_id: str, message: str, total_ticks: int) -> ExcludedModel:
    provider, model_name = _split_id(model_id)
    return ExcludedModel(
        model_id=model_id,
        model_name=model_name,
        provider=provider,
        reason="Failed",
        message=message,
        predictions=0,
        total_ticks=total_ticks,
    )


def collect_series(
    ticks: Sequence[Tick],
    tick_results: Sequence[TickResult],
    models: Sequence[str],
) -> dict[str, _Series]:
    """
    Gather (prediction, confidence, actual, previous actual) samples per model.

    Every forecast in a committed tick is a sample, judged or not.
    Ticks whose previous or next actual value is missing are skipped.
    """
    series = {model_id: _Series() for model_id in models}

    for result in tick_results:
        prev_actual = result.tick_data.actual
        next_index = result.tick_index + 1
        actual = ticks[next_index].actual if next_index < len(ticks) else None

        if prev_actual is None or actual is None:
            continue

        for model_id, forecast in result.forecasts.items():
            if model_id not in series:
                continue
            samples = series[model_id]
            samples.predictions.append(forecast.prediction)
            samples.confidences.append(forecast.confidence)
            samples.actuals.append(actual)
            samples.prev_actuals.append(prev_actual)

    return series


def score_model(
    model_id: str,
    samples: _Series,
    actuals_range: float,
    total_ticks: int,
) -> ModelBenchmark:
    n = len(samples)
    predictions = np.array(samples.predictions)
    actuals = np.array(samples.actuals)
    prev_actuals = np.array(samples.prev_actuals)
    confidences = np.array(samples.confidences)

    # Zero-vs-zero counts as a correct call
    outcomes = (
        np.sign(predictions - prev_actuals) == np.sign(actuals - prev_actuals)
    ).astype(float)

    directional_accuracy = float(np.mean(outcomes)) * 100
    rmse = float(np.sqrt(np.mean((actuals - predictions) ** 2)))
    # Brier "event" is the directional outcome, not the judge's accuracy
    brier_score = float(np.mean((confidences - outcomes) ** 2))
    avg_confidence = float(np.mean(confidences)) * 100

    norm_rmse = 1 - min(1.0, rmse / actuals_range) if actuals_range > 0 else 0.0
    composite_score = (
        WEIGHT_DIRECTION * (directional_accuracy / 100)
        + WEIGHT_RMSE * norm_rmse
        + WEIGHT_CONFIDENCE * (avg_confidence / 100)
        + WEIGHT_BRIER * (1 - brier_score)
    ) * 100

    provider, model_name = _split_id(model_id)
    return ModelBenchmark(
        model_id=model_id,
        model_name=model_name,
        provider=provider,
        completion_rate=n / total_ticks * 100 if total_ticks > 0 else 0.0,
        directional_accuracy=directional_accuracy,
        rmse=rmse,
        brier_score=brier_score,
        avg_confidence=avg_confidence,
        composite_score=composite_score,
        predictions=n,
    )


def calculate_aggregate_scores(
    ticks: Sequence[Tick],
    tick_results: Sequence[TickResult],
    models: Sequence[str],
    errors: Mapping[str, str],
    participation_threshold: float = PARTICIPATION_THRESHOLD,
) -> BacktestResults:
    """
    Compute per-model benchmarks and split them into ranked and excluded.

    Args:
        ticks: Full ordered tick sequence of the run
        tick_results: Committed per-tick results
        models: Every forecaster id configured at run start
        errors: Forecaster id -> first permanent error message
        participation_threshold: Minimum completion rate (percent) to rank

    Returns:
        BacktestResults; when nothing qualifies, all summary fields are zero
        and only ``excluded_models`` is populated
    """
    total_ticks = len(ticks) - 1

    if not tick_results:
        return BacktestResults(
            excluded_models=[
                _failed_model(model_id, errors.get(model_id) or NO_RESULTS_MESSAGE, total_ticks)
                for model_id in models
            ]
        )

    series = collect_series(ticks, tick_results, models)

    # One normalisation range shared by every model
    all_actuals = [actual for samples in series.values() for actual in samples.actuals]
    actuals_range = max(all_actuals) - min(all_actuals) if all_actuals else 0.0

    top_performers: list[ModelBenchmark] = []
    excluded_models: list[ExcludedModel] = []

    for model_id in models:
        samples = series[model_id]
        if len(samples) == 0:
            continue

        benchmark = score_model(model_id, samples, actuals_range, total_ticks)
        if benchmark.completion_rate < participation_threshold:
            excluded_models.append(
                ExcludedModel(
                    **benchmark.model_dump(),
                    reason="Insufficient Coverage",
                    total_ticks=total_ticks,
                )
            )
        else:
            top_performers.append(benchmark)

    for model_id in models:
        if len(series[model_id]) == 0:
            excluded_models.append(
                _failed_model(model_id, errors.get(model_id) or NO_OUTPUT_MESSAGE, total_ticks)
            )

    # Stable: equal scores keep configuration order
    top_performers.sort(key=lambda b: b.composite_score, reverse=True)

    if not top_performers:
        logger.warning("No model met the participation threshold; run reported as failed")
        return BacktestResults(excluded_models=excluded_models)

    return BacktestResults(
        composite_score=_mean([p.composite_score for p in top_performers]),
        overall_directional_accuracy=_mean([p.directional_accuracy for p in top_performers]),
        overall_magnitude_rmse=_mean([p.rmse for p in top_performers]),
        overall_avg_confidence=_mean([p.avg_confidence for p in top_performers]),
        top_performers=top_performers,
        excluded_models=excluded_models,
    )
