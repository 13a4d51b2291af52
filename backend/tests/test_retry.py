"""Tests for the video RetryPolicy."""

import asyncio

import pytest

from talkpipe.errors import PipelineCancelled, ServiceError
from talkpipe.orchestrator.retry import RetryPolicy


class _Flaky:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_two_failures_raise_last_error():
    fn = _Flaky(ServiceError(500, "first"), ServiceError(500, "provider timeout"))
    policy = RetryPolicy(max_attempts=2, backoff=0)

    with pytest.raises(ServiceError, match="provider timeout"):
        await policy.call(fn)

    assert fn.calls == 2


@pytest.mark.asyncio
async def test_second_attempt_success():
    fn = _Flaky(ServiceError(500, "provider timeout"), "/videos/out.mp4")
    policy = RetryPolicy(max_attempts=2, backoff=0)

    assert await policy.call(fn) == "/videos/out.mp4"
    assert fn.calls == 2


@pytest.mark.asyncio
async def test_cancellation_is_not_retried():
    fn = _Flaky(PipelineCancelled(1, 2), "never")
    policy = RetryPolicy(max_attempts=2, backoff=0)

    with pytest.raises(PipelineCancelled):
        await policy.call(fn)

    assert fn.calls == 1


@pytest.mark.asyncio
async def test_task_cancel_is_not_retried():
    fn = _Flaky(asyncio.CancelledError(), "never")
    policy = RetryPolicy(max_attempts=2, backoff=0)

    with pytest.raises(asyncio.CancelledError):
        await policy.call(fn)

    assert fn.calls == 1


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


@pytest.mark.asyncio
async def test_rate_limited_failure_is_retried():
    fn = _Flaky(ServiceError(429, "Too many requests"), ServiceError(429, "Too many requests"))
    policy = RetryPolicy(max_attempts=2, backoff=0)

    with pytest.raises(ServiceError) as exc_info:
        await policy.call(fn)

    assert exc_info.value.rate_limited
    assert fn.calls == 2
