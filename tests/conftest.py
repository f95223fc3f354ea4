"""Shared test fixtures for Macro Arena."""

import os
from typing import Any, Callable

import pytest

# Ensure tests never hit real APIs or write logs into the repo
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_DIR", "/tmp/macro-arena-test-logs")
os.environ.setdefault("OLLAMA_BASE_URL", "http://localhost:11434")

from macro_arena.models import Tick  # noqa: E402


class ScriptedClient:
    """Stand-in model client.

    ``responder(prompt, call_number)`` returns the JSON payload for a call, or
    an exception instance to raise. ``call_number`` starts at 1.
    """

    def __init__(self, model: str, responder: Callable[[str, int], Any]) -> None:
        self.model = model
        self.responder = responder
        self.prompts: list[str] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate_structured_output(self, prompt: str) -> Any:
        self.prompts.append(prompt)
        result = self.responder(prompt, len(self.prompts))
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self) -> None:
        self.closed = True


def build_tick(
    date: str,
    value: float | None,
    country: str = "United States",
    indicator: str = "Inflation Rate",
    unit: str = "percent",
    peers: list[dict] | None = None,
) -> Tick:
    return Tick.model_validate(
        {
            "date": date,
            "country": country,
            "indicator": indicator,
            "primary": {"title": indicator, "value": value, "unit": unit},
            "peers": peers or [],
        }
    )


@pytest.fixture
def make_tick() -> Callable[..., Tick]:
    return build_tick


@pytest.fixture
def scripted_client() -> type[ScriptedClient]:
    return ScriptedClient


@pytest.fixture
def three_ticks() -> list[Tick]:
    return [
        build_tick("2024-01-31", 100.0),
        build_tick("2024-02-29", 110.0),
        build_tick("2024-03-31", 105.0),
    ]


@pytest.fixture
def peer_tick() -> Tick:
    return build_tick(
        "2024-01-31T00:00:00",
        3.1,
        peers=[
            {"title": "Core Inflation Rate", "value": 3.9, "unit": "percent", "relationship": 0},
            {"title": "Producer Prices", "value": None, "unit": "points", "relationship": 0},
        ],
    )
