"""
Prompt Template Engine - fills bracketed tokens in user prompt templates.

Templates use tokens such as ``[COUNTRY]`` or ``[PAST_FEEDBACK]``. A token may
carry an inline fallback hint, e.g. ``[PAST_FEEDBACK or "None (first tick)"]``;
the whole bracket is replaced. Tokens a template engine does not recognise are
left untouched.
"""
import datetime as dt
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, Sequence, TypeVar

from macro_arena.models import ForecastResult, PerformanceRecord, Tick

NO_HISTORY = "None (first tick)"

TOKEN_PATTERN = re.compile(r'\[([A-Z][A-Z0-9_]*)(?:\s+or\s+"[^"\]]*")?\]')

C = TypeVar("C")


def format_value(value: Any) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_date(value: dt.date) -> str:
    return value.strftime("%x")


@dataclass(frozen=True)
class ForecastPromptContext:
    tick: Tick
    next_date: dt.date
    past_feedback: Sequence[str] = ()
    feedback_limit: int = 0


@dataclass(frozen=True)
class JudgePromptContext:
    model_name: str
    tick_index: int
    tick: Tick
    next_date: dt.date
    forecast: ForecastResult
    actual_value: float
    past_performance: Sequence[PerformanceRecord] = ()
    feedback_limit: int = 0


class PromptTemplate(Generic[C]):
    """Token table for one prompt kind, applied to any template string."""

    def __init__(self, name: str, resolvers: Mapping[str, Callable[[C], str]]) -> None:
        self.name = name
        self.resolvers = dict(resolvers)

    @property
    def tokens(self) -> frozenset[str]:
        return frozenset(self.resolvers)

    def render(self, template: str, context: C) -> str:
        # Single pass, so substituted text is never itself re-substituted
        cache: dict[str, str] = {}

        def substitute(match: re.Match) -> str:
            token = match.group(1)
            resolver = self.resolvers.get(token)
            if resolver is None:
                return match.group(0)
            if token not in cache:
                cache[token] = resolver(context)
            return cache[token]

        return TOKEN_PATTERN.sub(substitute, template)

    def unknown_tokens(self, template: str) -> list[str]:
        """Bracket tokens in ``template`` that this prompt kind cannot fill."""
        found = dict.fromkeys(m.group(1) for m in TOKEN_PATTERN.finditer(template))
        return [token for token in found if token not in self.tokens]


def render_peer_data(tick: Tick) -> str:
    return "\n".join(
        f"- {peer.title}: {format_value(peer.value)} ({peer.unit})" for peer in tick.peers
    )


def render_past_feedback(feedback: Sequence[str]) -> str:
    if not feedback:
        return NO_HISTORY
    return "\n".join(f"Feedback {i}: {text}" for i, text in enumerate(feedback, 1))


def render_past_performance(tick_index: int, performance: Sequence[PerformanceRecord]) -> str:
    if not performance:
        return NO_HISTORY
    first = tick_index - len(performance)
    return "\n".join(
        f"Tick {first + i}: Prediction: {format_value(p.prediction)}, "
        f"Actual: {format_value(p.actual)}, Error: {p.error:.2f}"
        for i, p in enumerate(performance)
    )


FORECAST_TEMPLATE: PromptTemplate[ForecastPromptContext] = PromptTemplate(
    "forecast",
    {
        "COUNTRY": lambda c: c.tick.country,
        "INDICATOR": lambda c: c.tick.indicator,
        "CURRENT_DATE": lambda c: format_date(c.tick.date),
        "CURRENT_VALUE": lambda c: format_value(c.tick.actual),
        "CURRENT_UNIT": lambda c: c.tick.primary.unit,
        "PEER_DATA": lambda c: render_peer_data(c.tick),
        "FEEDBACK_LIMIT": lambda c: str(c.feedback_limit),
        "PAST_FEEDBACK": lambda c: render_past_feedback(c.past_feedback),
        "NEXT_DATE": lambda c: format_date(c.next_date),
    },
)

JUDGE_TEMPLATE: PromptTemplate[JudgePromptContext] = PromptTemplate(
    "judge",
    {
        "MODEL_NAME": lambda c: c.model_name,
        "TICK_INDEX": lambda c: str(c.tick_index),
        "INDICATOR": lambda c: c.tick.indicator,
        "COUNTRY": lambda c: c.tick.country,
        "NEXT_DATE": lambda c: format_date(c.next_date),
        "PERIOD": lambda c: format_date(c.next_date),
        "PREDICTION": lambda c: format_value(c.forecast.prediction),
        "UNIT": lambda c: c.forecast.unit,
        "ACTUAL_VALUE": lambda c: format_value(c.actual_value),
        "CONFIDENCE": lambda c: format_value(c.forecast.confidence),
        "FEEDBACK_LIMIT": lambda c: str(c.feedback_limit),
        "PAST_PERFORMANCE": lambda c: render_past_performance(c.tick_index, c.past_performance),
    },
)
