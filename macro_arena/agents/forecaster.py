"""
Forecaster Agent - predicts the next tick's primary value.
"""
import asyncio
from typing import Any, Awaitable, Callable, Sequence

from loguru import logger

from macro_arena.agents.base import invoke_with_timeout, load_prompt, validate_output
from macro_arena.agents.retry import MAX_ATTEMPTS, call_with_retries
from macro_arena.prompts import FORECAST_TEMPLATE, ForecastPromptContext
from macro_arena.models import ForecastResult, Tick


class ForecasterAgent:
    """Agent that turns one tick of data plus judge feedback into a forecast."""

    def __init__(
        self,
        forecaster_id: str,
        client: Any,
        template: str | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize Forecaster Agent.

        Args:
            forecaster_id: ``provider::model`` id of this forecaster
            client: Resolved model client exposing ``generate_structured_output``
            template: Prompt template (defaults to forecaster.yaml)
            max_attempts: Total attempts for retryable failures
            timeout: Per-attempt timeout in seconds
            sleep: Backoff sleep, injectable for tests
        """
        if template is None:
            template = load_prompt("forecaster")

        unknown = FORECAST_TEMPLATE.unknown_tokens(template)
        if unknown:
            logger.warning(f"Forecast template for {forecaster_id} has unknown tokens: {unknown}")

        self.forecaster_id = forecaster_id
        self.client = client
        self.template = template
        self.max_attempts = max_attempts
        self.timeout = timeout
        self._sleep = sleep

    def build_prompt(
        self,
        tick: Tick,
        next_tick: Tick,
        past_feedback: Sequence[str],
        feedback_limit: int,
    ) -> str:
        context = ForecastPromptContext(
            tick=tick,
            next_date=next_tick.date,
            past_feedback=tuple(past_feedback),
            feedback_limit=feedback_limit,
        )
        return FORECAST_TEMPLATE.render(self.template, context)

    async def forecast(self, prompt: str) -> ForecastResult:
        result = await call_with_retries(
            lambda: self._invoke(prompt),
            label=self.forecaster_id,
            max_attempts=self.max_attempts,
            sleep=self._sleep,
        )
        logger.debug(
            f"{self.forecaster_id} predicted {result.prediction} "
            f"(confidence {result.confidence:.2f})"
        )
        return result

    async def _invoke(self, prompt: str) -> ForecastResult:
        payload = await invoke_with_timeout(self.client, prompt, self.timeout)
        return validate_output(ForecastResult, payload, model=self.forecaster_id)
