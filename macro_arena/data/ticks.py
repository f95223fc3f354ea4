"""File-backed tick provider."""
import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from macro_arena.models import Tick
from macro_arena.utils.exceptions import ConfigError


def load_ticks(path: Path) -> list[Tick]:
    """
    Load a JSON array of ticks and return them sorted ascending by date.

    Args:
        path: JSON file holding a list of tick objects

    Returns:
        Validated ticks in date order

    Raises:
        ConfigError: If the file is missing, not JSON, or a tick is invalid
    """
    if not path.exists():
        raise ConfigError(f"Tick file not found: '{path}'")

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Failed to read tick file '{path}': {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"Invalid JSON in tick file '{path}': {e.msg} (line {e.lineno}, column {e.colno})"
        ) from e

    if not isinstance(payload, list):
        raise ConfigError(f"Tick file root must be a JSON array in '{path}'")

    ticks: list[Tick] = []
    for index, raw in enumerate(payload):
        try:
            ticks.append(Tick.model_validate(raw))
        except ValidationError as e:
            raise ConfigError(f"Invalid tick #{index} in '{path}': {e.error_count()} errors") from e

    ticks.sort(key=lambda t: t.date)
    logger.info(f"Loaded {len(ticks)} ticks from {path}")
    return ticks

