from unittest.mock import AsyncMock

import pytest

from macro_arena.agents.retry import backoff_delay, call_with_retries, is_retryable
from macro_arena.utils.exceptions import (
    AuthenticationError,
    InvocationError,
    MalformedOutputError,
    TransportError,
)


@pytest.mark.parametrize(
    "error",
    [
        TransportError("connection reset", model="m"),
        TransportError("Rate limit hit", model="m", status_code=429),
        TransportError("Model call failed.", model="m", status_code=503),
        InvocationError("Rate limit hit for this model.", model="m"),
        InvocationError("The provider returned status: 502.", model="m"),
        RuntimeError("Model is overloaded, try later"),
    ],
)
def test_retryable_errors(error):
    assert is_retryable(error)


@pytest.mark.parametrize(
    "error",
    [
        AuthenticationError("Invalid API Key (status 500 in body)", model="m"),
        MalformedOutputError("Model returned malformed JSON.", model="m"),
        InvocationError("Model 'x' is not available.", model="m"),
        TransportError("Model call failed.", model="m", status_code=404),
        TransportError("Bad request", model="m", status_code=400),
        TransportError("Unprocessable", model="m", status_code=422),
        ValueError("bad value"),
    ],
)
def test_non_retryable_errors(error):
    assert not is_retryable(error)


def test_backoff_delay_has_jitter_window():
    for attempt in (1, 2):
        delay = backoff_delay(attempt)
        assert 2 ** attempt <= delay < 2 ** attempt + 1


@pytest.mark.asyncio
async def test_succeeds_after_retryable_failures():
    operation = AsyncMock(
        side_effect=[
            TransportError("status 503", model="m"),
            TransportError("status 503", model="m"),
            {"prediction": 1.0},
        ]
    )
    sleep = AsyncMock()

    result = await call_with_retries(operation, label="m", max_attempts=3, sleep=sleep)

    assert result == {"prediction": 1.0}
    assert operation.await_count == 3
    delays = [call.args[0] for call in sleep.await_args_list]
    assert len(delays) == 2
    assert 2 <= delays[0] < 3
    assert 4 <= delays[1] < 5


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    error = TransportError("status 503", model="m")
    operation = AsyncMock(side_effect=error)
    sleep = AsyncMock()

    with pytest.raises(TransportError) as exc_info:
        await call_with_retries(operation, label="m", max_attempts=3, sleep=sleep)

    assert exc_info.value is error
    assert operation.await_count == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately():
    operation = AsyncMock(side_effect=AuthenticationError("Invalid API Key", model="m"))
    sleep = AsyncMock()

    with pytest.raises(AuthenticationError):
        await call_with_retries(operation, label="m", sleep=sleep)

    assert operation.await_count == 1
    sleep.assert_not_awaited()
