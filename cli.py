import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger

from config.settings import get_settings
from macro_arena.agents import load_prompt
from macro_arena.backtest import run_backtest
from macro_arena.data import load_ticks
from macro_arena.models import BacktestConfig, BacktestOutcome
from macro_arena.utils.exceptions import ArenaError
from macro_arena.utils.logging import setup_logging

app = typer.Typer(no_args_is_help=True)


def _read_template(path: Optional[Path], default_name: str) -> str:
    if path is None:
        return load_prompt(default_name)
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise typer.BadParameter(f"Cannot read prompt template '{path}': {e}")


def _print_outcome(outcome: BacktestOutcome) -> None:
    results = outcome.results

    typer.echo("Backtest Results")
    typer.echo("=" * 50)
    typer.echo(f"Ticks evaluated: {len(outcome.tick_results)}")
    typer.echo(f"Stopped: {outcome.stop_reason.value}")
    typer.echo("")

    if results.failed:
        typer.echo("FAILED RUN: no model met the participation threshold")
    else:
        typer.echo(f"Composite score: {results.composite_score:.1f}")
        typer.echo(f"Directional accuracy: {results.overall_directional_accuracy:.1f}%")
        typer.echo(f"Magnitude RMSE: {results.overall_magnitude_rmse:.4f}")
        typer.echo(f"Avg confidence: {results.overall_avg_confidence:.1f}%")
        typer.echo("")
        typer.echo("Top performers:")
        for rank, bench in enumerate(results.top_performers, 1):
            typer.echo(
                f"  {rank}. {bench.model_id}: score {bench.composite_score:.1f}, "
                f"direction {bench.directional_accuracy:.1f}%, RMSE {bench.rmse:.4f}, "
                f"Brier {bench.brier_score:.3f}, {bench.predictions} predictions"
            )

    if results.excluded_models:
        typer.echo("")
        typer.echo("Excluded models:")
        for excluded in results.excluded_models:
            detail = f" - {excluded.message}" if excluded.message else ""
            typer.echo(
                f"  {excluded.model_id}: {excluded.reason} "
                f"({excluded.predictions}/{excluded.total_ticks}){detail}"
            )


@app.command()
def run(
    ticks_file: Path = typer.Argument(..., help="JSON file holding the tick sequence"),
    forecaster: List[str] = typer.Option(
        ..., "--forecaster", "-f", help="Forecaster id as provider::model (repeatable)"
    ),
    judge: Optional[str] = typer.Option(None, "--judge", "-j", help="Judge id as provider::model"),
    feedback_limit: Optional[int] = typer.Option(None, "--feedback-limit", min=0),
    max_predictions: Optional[int] = typer.Option(None, "--max-predictions", min=1),
    forecast_prompt: Optional[Path] = typer.Option(None, "--forecast-prompt"),
    judge_prompt: Optional[Path] = typer.Option(None, "--judge-prompt"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write outcome JSON here"),
) -> None:
    """Run a forecaster/judge backtest over historical ticks."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir, settings.log_json)

    try:
        ticks = load_ticks(ticks_file)
        config = BacktestConfig(
            forecasters=forecaster,
            judge_model=judge or settings.backtest.judge_model,
            forecast_prompt=_read_template(forecast_prompt, "forecaster"),
            judge_prompt=_read_template(judge_prompt, "judge"),
            feedback_limit=(
                feedback_limit if feedback_limit is not None else settings.backtest.feedback_limit
            ),
            max_predictions=(
                max_predictions
                if max_predictions is not None
                else settings.backtest.max_predictions
            ),
        )

        outcome = asyncio.run(
            run_backtest(config, ticks, settings.providers.credentials(), settings)
        )

    except (ArenaError, ValueError) as e:
        logger.error(f"Backtest failed: {e}")
        typer.echo(f"Backtest failed: {e}", err=True)
        raise typer.Exit(code=1)

    _print_outcome(outcome)

    if output is not None:
        output.write_text(outcome.model_dump_json(indent=2), encoding="utf-8")
        typer.echo(f"\nWrote results to {output}")


@app.command()
def status() -> None:
    """Show configured providers and backtest defaults."""
    settings = get_settings()

    typer.echo("Macro Arena Status")
    typer.echo("=" * 50)

    configured = settings.providers.credentials()
    for provider in ("OpenRouter", "Google Gemini"):
        typer.echo(f"{provider} API key: {'YES' if provider in configured else 'NO'}")
    typer.echo(f"Ollama URL: {settings.llm.ollama_base_url}")
    typer.echo(f"Model timeout: {settings.llm.timeout}s")
    typer.echo("")

    backtest = settings.backtest
    typer.echo(f"Judge model: {backtest.judge_model}")
    typer.echo(f"Feedback limit: {backtest.feedback_limit}")
    typer.echo(f"Max predictions: {backtest.max_predictions}")
    typer.echo(f"Participation threshold: {backtest.participation_threshold:.0f}%")
    typer.echo(f"Forecast attempts: {backtest.max_forecast_attempts}")


if __name__ == "__main__":
    app()
