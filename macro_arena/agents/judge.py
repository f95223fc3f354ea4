"""
Judge Agent - scores a forecast against the realised value and writes feedback.
"""
from typing import Any, Sequence

from loguru import logger

from macro_arena.agents.base import invoke_with_timeout, load_prompt, validate_output
from macro_arena.prompts import JUDGE_TEMPLATE, JudgePromptContext
from macro_arena.models import ForecastResult, JudgeResult, PerformanceRecord, Tick


class JudgeAgent:
    """Single shared evaluator; its calls are never retried."""

    def __init__(
        self,
        judge_id: str,
        client: Any,
        template: str | None = None,
        timeout: float | None = None,
    ):
        """
        Initialize Judge Agent.

        Args:
            judge_id: ``provider::model`` id of the judge
            client: Resolved model client exposing ``generate_structured_output``
            template: Prompt template (defaults to judge.yaml)
            timeout: Per-call timeout in seconds
        """
        if template is None:
            template = load_prompt("judge")

        unknown = JUDGE_TEMPLATE.unknown_tokens(template)
        if unknown:
            logger.warning(f"Judge template has unknown tokens: {unknown}")

        self.judge_id = judge_id
        self.client = client
        self.template = template
        self.timeout = timeout

    def build_prompt(
        self,
        forecaster_id: str,
        tick_index: int,
        tick: Tick,
        next_tick: Tick,
        forecast: ForecastResult,
        actual_value: float,
        past_performance: Sequence[PerformanceRecord],
        feedback_limit: int,
    ) -> str:
        context = JudgePromptContext(
            model_name=forecaster_id,
            tick_index=tick_index,
            tick=tick,
            next_date=next_tick.date,
            forecast=forecast,
            actual_value=actual_value,
            past_performance=tuple(past_performance),
            feedback_limit=feedback_limit,
        )
        return JUDGE_TEMPLATE.render(self.template, context)

    async def evaluate(self, prompt: str) -> JudgeResult:
        payload = await invoke_with_timeout(self.client, prompt, self.timeout)
        return validate_output(JudgeResult, payload, model=self.judge_id)
