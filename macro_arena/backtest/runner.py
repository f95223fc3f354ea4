"""
Simulation loop - drives forecaster and judge agents tick by tick.

Ticks run strictly in sequence. Within a tick, all forecaster calls run
concurrently, then all judge calls for the successful forecasts run
concurrently; each phase waits for every call to settle before moving on.
"""
import asyncio
from typing import Any, Mapping, Sequence

from loguru import logger

from config.settings import Settings, get_settings
from macro_arena.agents import ForecasterAgent, JudgeAgent, create_backtest_agents
from macro_arena.backtest.scoring import PARTICIPATION_THRESHOLD, calculate_aggregate_scores
from macro_arena.backtest.state import ModelRecord, RunState
from macro_arena.models import (
    BacktestConfig,
    BacktestOutcome,
    ForecastResult,
    JudgeResult,
    StopReason,
    Tick,
    TickResult,
)
from macro_arena.utils.exceptions import BacktestSetupError, InvocationError

MISSING_AGENT_MESSAGE = "No client configured for this model."


def check_config(config: BacktestConfig) -> None:
    if not config.judge_model:
        raise BacktestSetupError("A judge model must be selected to run a backtest.")
    if not config.forecasters:
        raise BacktestSetupError("At least one forecaster model must be selected.")


def check_ticks(ticks: Sequence[Tick]) -> None:
    if len(ticks) < 2:
        raise BacktestSetupError("At least two data ticks are required to run a backtest.")


def _error_message(error: BaseException) -> str:
    if isinstance(error, InvocationError):
        return error.message
    return str(error) or type(error).__name__


def _reraise_cancellation(outcomes: Sequence[Any]) -> None:
    for outcome in outcomes:
        if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
            raise outcome


class BacktestRunner:
    """Owns one run's state; ``run`` may be called again for a fresh run."""

    def __init__(
        self,
        config: BacktestConfig,
        forecasters: Mapping[str, ForecasterAgent],
        judge: JudgeAgent,
        setup_errors: Mapping[str, str] | None = None,
        participation_threshold: float = PARTICIPATION_THRESHOLD,
    ):
        """
        Initialize the runner with resolved agents.

        Args:
            config: Run configuration
            forecasters: Forecaster id -> agent
            judge: Shared judge agent
            setup_errors: Forecaster id -> error for models that could not be
                resolved; these start the run already failed
            participation_threshold: Minimum completion rate (percent) to rank
        """
        check_config(config)

        self.config = config
        self.forecasters = dict(forecasters)
        self.judge = judge
        self.setup_errors = dict(setup_errors or {})
        self.participation_threshold = participation_threshold
        self.state = self._initial_state()
        self._cancel_requested = False

    @classmethod
    def from_config(
        cls,
        config: BacktestConfig,
        credentials: dict[str, str],
        settings: Settings | None = None,
    ) -> "BacktestRunner":
        check_config(config)
        settings = settings or get_settings()

        forecasters, judge, setup_errors = create_backtest_agents(config, credentials, settings)

        return cls(
            config=config,
            forecasters=forecasters,
            judge=judge,
            setup_errors=setup_errors,
            participation_threshold=settings.backtest.participation_threshold,
        )

    @property
    def tick_results(self) -> list[TickResult]:
        return self.state.tick_results

    def cancel(self) -> None:
        """Stop before the next tick; committed tick results are kept."""
        if not self._cancel_requested:
            logger.warning("Backtest cancellation requested")
        self._cancel_requested = True

    async def run(self, ticks: Sequence[Tick]) -> BacktestOutcome:
        check_ticks(ticks)

        self.state = self._initial_state()
        self._cancel_requested = False
        feedback_limit = self.config.feedback_limit
        steps = min(len(ticks) - 1, self.config.max_predictions)
        stop_reason = StopReason.COMPLETED

        logger.info(
            f"Starting backtest: {len(self.config.forecasters)} forecasters, "
            f"judge {self.judge.judge_id}, {steps} ticks"
        )

        for i in range(steps):
            if self._cancel_requested:
                logger.info(f"Backtest cancelled before tick {i}")
                stop_reason = StopReason.CANCELLED
                break

            current_tick = ticks[i]
            next_tick = ticks[i + 1] if i + 1 < len(ticks) else None
            if next_tick is None:
                break

            if next_tick.actual is None:
                logger.info(
                    f"Ending backtest loop at tick {i}: the next data point "
                    f"({next_tick.date}) has no actual value to evaluate against"
                )
                stop_reason = StopReason.NO_GROUND_TRUTH
                break

            forecasts = await self._forecast_phase(i, current_tick, next_tick, feedback_limit)
            evaluations = await self._evaluation_phase(
                i, current_tick, next_tick, forecasts, feedback_limit
            )

            if evaluations:
                self.state.tick_results.append(
                    TickResult(
                        tick_index=i,
                        tick_data=current_tick,
                        forecasts=forecasts,
                        evaluations=evaluations,
                    )
                )
                logger.info(f"Tick {i} committed: {len(evaluations)} models evaluated")
            else:
                logger.warning(f"Tick {i} produced no evaluated forecasts")

        errors = self.state.errors()
        results = calculate_aggregate_scores(
            ticks,
            self.state.tick_results,
            self.config.forecasters,
            errors,
            participation_threshold=self.participation_threshold,
        )

        logger.info(
            f"Backtest finished ({stop_reason.value}): "
            f"{len(self.state.tick_results)} ticks, "
            f"{len(results.top_performers)} ranked, {len(results.excluded_models)} excluded"
        )

        return BacktestOutcome(
            results=results,
            tick_results=list(self.state.tick_results),
            errors=errors,
            stop_reason=stop_reason,
        )

    async def aclose(self) -> None:
        clients = {id(agent.client): agent.client for agent in self.forecasters.values()}
        clients[id(self.judge.client)] = self.judge.client
        for client in clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    def _initial_state(self) -> RunState:
        state = RunState.for_models(self.config.forecasters)
        for model_id, record in state.models.items():
            if model_id in self.setup_errors:
                record.mark_failed(self.setup_errors[model_id])
            elif model_id not in self.forecasters:
                record.mark_failed(MISSING_AGENT_MESSAGE)
        return state

    async def _forecast_phase(
        self,
        tick_index: int,
        current_tick: Tick,
        next_tick: Tick,
        feedback_limit: int,
    ) -> dict[str, ForecastResult]:
        active = self.state.active_models()

        async def forecast(record: ModelRecord) -> ForecastResult:
            agent = self.forecasters[record.forecaster_id]
            prompt = agent.build_prompt(
                current_tick,
                next_tick,
                record.recent_feedback(feedback_limit),
                feedback_limit,
            )
            return await agent.forecast(prompt)

        outcomes = await asyncio.gather(
            *(forecast(record) for record in active), return_exceptions=True
        )
        _reraise_cancellation(outcomes)

        forecasts: dict[str, ForecastResult] = {}
        for record, outcome in zip(active, outcomes):
            if isinstance(outcome, BaseException):
                self._fail(record, _error_message(outcome), tick_index)
            else:
                forecasts[record.forecaster_id] = outcome

        return forecasts

    async def _evaluation_phase(
        self,
        tick_index: int,
        current_tick: Tick,
        next_tick: Tick,
        forecasts: dict[str, ForecastResult],
        feedback_limit: int,
    ) -> dict[str, JudgeResult]:
        actual = next_tick.actual
        pending = [(self.state.models[model_id], f) for model_id, f in forecasts.items()]

        async def evaluate(record: ModelRecord, forecast: ForecastResult) -> JudgeResult:
            prompt = self.judge.build_prompt(
                forecaster_id=record.forecaster_id,
                tick_index=tick_index + 1,
                tick=current_tick,
                next_tick=next_tick,
                forecast=forecast,
                actual_value=actual,
                past_performance=record.recent_performance(feedback_limit),
                feedback_limit=feedback_limit,
            )
            return await self.judge.evaluate(prompt)

        outcomes = await asyncio.gather(
            *(evaluate(record, forecast) for record, forecast in pending),
            return_exceptions=True,
        )
        _reraise_cancellation(outcomes)

        evaluations: dict[str, JudgeResult] = {}
        for (record, forecast), outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                self._fail(record, f"Evaluation failed: {_error_message(outcome)}", tick_index)
            else:
                evaluations[record.forecaster_id] = outcome
                record.record_evaluation(forecast, actual, outcome)

        return evaluations

    def _fail(self, record: ModelRecord, message: str, tick_index: int) -> None:
        if record.mark_failed(message):
            logger.error(
                f"{record.forecaster_id} permanently failed on tick {tick_index}: {message}"
            )


async def run_backtest(
    config: BacktestConfig,
    ticks: Sequence[Tick],
    credentials: dict[str, str],
    settings: Settings | None = None,
) -> BacktestOutcome:
    """Build a runner from ``config``, run it over ``ticks`` and close its clients."""
    check_ticks(ticks)
    runner = BacktestRunner.from_config(config, credentials, settings)
    try:
        return await runner.run(ticks)
    finally:
        await runner.aclose()
