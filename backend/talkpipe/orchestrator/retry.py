"""Bounded retry policy for the video stage.

Attempts the wrapped call up to max_attempts times with a fixed backoff
between attempts. Cancellation is never retried and never consumes an
attempt. Exhausting the attempts re-raises the last attempt's error.
"""

import logging
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from talkpipe.errors import is_cancellation

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_retriable(exc: BaseException) -> bool:
    """Return True for any stage failure; never for cancellation."""
    return isinstance(exc, Exception) and not is_cancellation(exc)


class RetryPolicy:
    """Fixed-backoff retry wrapper around one async call."""

    def __init__(self, max_attempts: int = 2, backoff: float = 3.0, *, name: str = "video"):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.name = name

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.backoff),
            retry=retry_if_exception(_is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(fn, *args, **kwargs)
