"""Retry handler tests."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from relaybot.infra.retry import ErrorKind, RetryConfig, RetryHandler, classify_error
from relaybot.llm.client import CompletionError


def test_classify_error():
    assert classify_error(CompletionError(ErrorKind.QUOTA, "out")) == ErrorKind.QUOTA
    assert classify_error(asyncio.TimeoutError()) == ErrorKind.TIMEOUT
    assert classify_error(ConnectionResetError()) == ErrorKind.NETWORK
    assert classify_error(ValueError("x")) == ErrorKind.UNKNOWN


def test_delay_grows_and_is_capped():
    handler = RetryHandler(RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False))

    assert [handler.calculate_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 5.0]


def test_jitter_adds_ten_to_thirty_percent():
    handler = RetryHandler(RetryConfig(base_delay=2.0, jitter=True))

    for _ in range(20):
        assert 2.2 <= handler.calculate_delay(0) <= 2.6


@pytest.mark.asyncio
async def test_single_attempt_by_default():
    func = AsyncMock(side_effect=CompletionError(ErrorKind.TIMEOUT, "slow"))
    handler = RetryHandler()

    with pytest.raises(CompletionError):
        await handler.call(func, "prompt")

    func.assert_awaited_once_with("prompt")
    assert handler.get_metrics()["retry_attempts"] == 0


@pytest.mark.asyncio
async def test_retries_transient_errors_until_success():
    func = AsyncMock(side_effect=[
        CompletionError(ErrorKind.NETWORK, "reset"),
        CompletionError(ErrorKind.RATE_LIMIT, "slow down"),
        "done",
    ])
    handler = RetryHandler(RetryConfig(max_attempts=3, base_delay=0.0))

    assert await handler.call(func) == "done"
    assert func.await_count == 3

    metrics = handler.get_metrics()
    assert metrics["retry_attempts"] == 2
    assert metrics["errors_by_kind"] == {"network": 1, "rate_limit": 1}


@pytest.mark.asyncio
async def test_exhausted_attempts_reraise_last_error():
    last = CompletionError(ErrorKind.SERVER_ERROR, "third")
    func = AsyncMock(side_effect=[
        CompletionError(ErrorKind.SERVER_ERROR, "first"),
        CompletionError(ErrorKind.SERVER_ERROR, "second"),
        last,
    ])
    handler = RetryHandler(RetryConfig(max_attempts=3, base_delay=0.0))

    with pytest.raises(CompletionError) as exc_info:
        await handler.call(func)

    assert exc_info.value is last
    assert handler.get_metrics()["exhausted"] == 1


@pytest.mark.asyncio
async def test_non_retryable_errors_raise_immediately():
    func = AsyncMock(side_effect=CompletionError(ErrorKind.QUOTA, "no credit"))
    handler = RetryHandler(RetryConfig(max_attempts=5, base_delay=0.0))

    with pytest.raises(CompletionError):
        await handler.call(func)

    func.assert_awaited_once()


def test_reset_metrics():
    handler = RetryHandler()
    handler._record_error(ErrorKind.TIMEOUT)

    handler.reset_metrics()

    assert handler.get_metrics()["total_errors"] == 0
