from loguru import logger

from config.settings import Settings, get_settings
from macro_arena.agents.base import (
    GeminiClient,
    LLMClient,
    OllamaClient,
    OpenRouterClient,
    create_client,
    generate_structured_output,
    load_prompt,
    parse_json_from_text,
)
from macro_arena.agents.forecaster import ForecasterAgent
from macro_arena.agents.judge import JudgeAgent
from macro_arena.agents.retry import call_with_retries, is_retryable
from macro_arena.models import BacktestConfig
from macro_arena.utils.exceptions import BacktestSetupError, InvocationError


def create_backtest_agents(
    config: BacktestConfig,
    credentials: dict[str, str],
    settings: Settings | None = None,
) -> tuple[dict[str, ForecasterAgent], JudgeAgent, dict[str, str]]:
    """
    Resolve every configured model to an agent with its own client.

    Factory function that initializes:
    - One ForecasterAgent per configured forecaster id
    - The shared JudgeAgent

    Args:
        config: Run configuration
        credentials: Provider name -> API key
        settings: Settings supplying base URLs, timeouts and retry limits

    Returns:
        Tuple of (forecasters, judge, setup_errors). Forecasters whose client
        could not be resolved are absent from ``forecasters`` and carry their
        error message in ``setup_errors``.

    Raises:
        BacktestSetupError: If the judge model cannot be resolved
    """
    settings = settings or get_settings()
    timeout = settings.llm.timeout

    try:
        judge_client = create_client(config.judge_model, credentials, settings)
    except (InvocationError, ValueError) as e:
        raise BacktestSetupError(f"Judge model '{config.judge_model}' unavailable: {e}") from e

    judge = JudgeAgent(
        judge_id=config.judge_model,
        client=judge_client,
        template=config.judge_prompt,
        timeout=timeout,
    )

    forecasters: dict[str, ForecasterAgent] = {}
    setup_errors: dict[str, str] = {}

    for model_id in config.forecasters:
        try:
            client = create_client(model_id, credentials, settings)
        except InvocationError as e:
            logger.error(f"Cannot initialize forecaster {model_id}: {e.message}")
            setup_errors[model_id] = e.message
            continue

        forecasters[model_id] = ForecasterAgent(
            forecaster_id=model_id,
            client=client,
            template=config.forecast_prompt,
            max_attempts=settings.backtest.max_forecast_attempts,
            timeout=timeout,
        )

    return forecasters, judge, setup_errors


__all__ = [
    "LLMClient",
    "OpenRouterClient",
    "GeminiClient",
    "OllamaClient",
    "create_client",
    "generate_structured_output",
    "load_prompt",
    "parse_json_from_text",
    "ForecasterAgent",
    "JudgeAgent",
    "call_with_retries",
    "is_retryable",
    "create_backtest_agents",
]
