"""Rate limiting and retry utilities for the price feed."""
from __future__ import annotations

import asyncio
import time
from functools import wraps
from typing import Any, Callable

import httpx
import structlog

log = structlog.get_logger(__name__)


class RateLimiter:
    """Sliding-window limiter: at most ``max_calls`` per ``period_seconds``."""

    def __init__(self, max_calls: int, period_seconds: float):
        self.max_calls = max_calls
        self.period_seconds = period_seconds
        self.calls: list[float] = []
        self.lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self.lock:
            now = time.monotonic()
            self.calls = [t for t in self.calls if now - t < self.period_seconds]

            if len(self.calls) >= self.max_calls:
                wait_time = self.period_seconds - (now - min(self.calls))
                if wait_time > 0:
                    log.debug("rate_limit_wait", wait_seconds=round(wait_time, 3))
                    await asyncio.sleep(wait_time)
                    now = time.monotonic()
                    self.calls = [t for t in self.calls if now - t < self.period_seconds]

            self.calls.append(time.monotonic())


def is_retryable(exc: BaseException) -> bool:
    """Transport failures, timeouts and 5xx answers are worth another try."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.RequestError)


def retry_with_backoff(
    max_retries: int = 2,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    should_retry: Callable[[BaseException], bool] = is_retryable,
):
    """Retry an async callable with exponential backoff.

    Non-retryable exceptions and the last retryable one propagate unchanged.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not should_retry(e):
                        log.error("feed_non_retryable_error", function=func.__name__, error=str(e))
                        raise
                    if attempt >= max_retries:
                        log.error(
                            "feed_retry_exhausted",
                            function=func.__name__,
                            attempts=max_retries + 1,
                            error=str(e),
                        )
                        raise
                    log.warning(
                        "feed_retry",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                    delay *= backoff_factor

        return wrapper

    return decorator


# The racecards endpoint is polled once a minute; this only guards manual bursts.
RACING_API_RATE_LIMITER = RateLimiter(max_calls=5, period_seconds=1.0)
