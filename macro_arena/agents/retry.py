"""Bounded retry with exponential backoff for forecaster invocations."""
import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from macro_arena.utils.exceptions import (
    AuthenticationError,
    MalformedOutputError,
    TransportError,
    UnsupportedProviderError,
)

T = TypeVar("T")

MAX_ATTEMPTS = 3

RETRYABLE_SIGNATURES = ("rate limit", "500", "502", "503", "504", "overloaded")


def _transient_status(status_code: int | None) -> bool:
    # None: connection failure or timeout, no HTTP answer
    return status_code is None or status_code == 429 or status_code >= 500


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, (AuthenticationError, MalformedOutputError, UnsupportedProviderError)):
        return False
    if isinstance(error, TransportError) and _transient_status(error.status_code):
        return True

    message = str(error).lower()
    return any(signature in message for signature in RETRYABLE_SIGNATURES)


def backoff_delay(attempt: int) -> float:
    return 2 ** attempt + random.random()


async def call_with_retries(
    operation: Callable[[], Awaitable[T]],
    label: str,
    max_attempts: int = MAX_ATTEMPTS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation()`` up to ``max_attempts`` times.

    Only errors classified by ``is_retryable`` are retried; anything else,
    or the error from the final attempt, propagates unchanged.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e) or attempt >= max_attempts:
                raise

            delay = backoff_delay(attempt)
            logger.warning(
                f"Retryable error for {label}: {e}. "
                f"Retrying in {delay:.1f}s (attempt {attempt}/{max_attempts - 1})"
            )
            await sleep(delay)
            attempt += 1
