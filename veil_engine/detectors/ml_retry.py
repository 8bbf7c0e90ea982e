"""
Retry with exponential backoff for ML inference calls.

Transient failures (timeouts, a model still loading, rate limits) are
retried; fatal ones (bad input, missing model, out of memory) are not.
``with_retry`` never raises: callers get an ``Ok`` or ``Err`` back and
decide whether to degrade.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "network",
    "connection",
    "econnrefused",
    "econnreset",
    "model not ready",
    "model loading",
    "temporary",
    "temporarily",
    "rate limit",
    "too many requests",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "429",
    "502",
    "503",
    "504",
)

FATAL_PATTERNS = (
    "invalid input",
    "model not found",
    "corrupted",
    "out of memory",
    "invalid configuration",
    "missing required",
    "unsupported",
    "400",
    "401",
    "403",
    "404",
    "405",
    "422",
)

# Exception classes that are transient regardless of their message
_RETRYABLE_TYPES = (TimeoutError, ConnectionError, asyncio.TimeoutError)


@dataclass(frozen=True)
class Ok:
    value: Any

    ok = True


@dataclass(frozen=True)
class Err:
    reason: str
    retryable: bool = False

    ok = False


Result = Union[Ok, Err]


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay: float = 0.1
    max_delay: float = 5.0
    multiplier: float = 2.0
    exponential_backoff: bool = True

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        if not self.exponential_backoff:
            return min(self.initial_delay, self.max_delay)
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


@dataclass
class RetryOutcome:
    result: Result
    attempts: int
    total_duration_ms: float


def classify_error(error: BaseException) -> bool:
    """
    Return True when the error is worth retrying.

    Fatal patterns win over retryable ones, so "404 connection" is fatal.
    Errors matching neither are not retried.
    """
    combined = f"{type(error).__name__}: {error}".lower()
    if any(pattern in combined for pattern in FATAL_PATTERNS):
        return False
    if isinstance(error, _RETRYABLE_TYPES):
        return True
    return any(pattern in combined for pattern in RETRYABLE_PATTERNS)


async def with_retry(
    fn: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    label: str = "ml",
) -> RetryOutcome:
    """
    Await fn until it succeeds, fails fatally, or retries run out.

    Args:
        fn: Zero-argument coroutine function
        config: Backoff settings (defaults: 3 retries, 0.1s doubling to 5s)
        label: Name used in log lines

    Returns:
        RetryOutcome holding Ok(value) or Err(reason, retryable)
    """
    config = config or RetryConfig()
    started = time.perf_counter()
    attempts = 0

    while True:
        attempts += 1
        try:
            value = await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            retryable = classify_error(e)
            reason = f"{type(e).__name__}: {e}"
            if not retryable or attempts > config.max_retries:
                logger.warning(
                    f"{label} failed after {attempts} attempt(s) ({type(e).__name__}, retryable={retryable})"
                )
                return RetryOutcome(
                    result=Err(reason, retryable),
                    attempts=attempts,
                    total_duration_ms=(time.perf_counter() - started) * 1000,
                )
            delay = config.delay_for(attempts)
            logger.debug(f"{label} attempt {attempts} failed ({type(e).__name__}), retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
            continue

        return RetryOutcome(
            result=Ok(value),
            attempts=attempts,
            total_duration_ms=(time.perf_counter() - started) * 1000,
        )
