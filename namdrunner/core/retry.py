"""
Exponential backoff with jitter for remote operations.

Usage:
    result = await retry_with_backoff(
        lambda: conn.run("squeue -u me"),
        RetryConfig.NETWORK,
    )

Operations passed here must be safe to repeat (``mkdir -p``, status
queries, whole-file overwrites).
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, ClassVar, Optional, TypeVar

from .exceptions import AutomationError, RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_KEYWORDS = (
    "timeout",
    "timed out",
    "connection",
    "network",
    "temporary",
    "busy",
    "unavailable",
    "interrupted",
    "broken pipe",
)
_PERMANENT_KEYWORDS = ("authentication", "permission denied", "not connected")


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    QUICK: ClassVar["RetryConfig"]
    PATIENT: ClassVar["RetryConfig"]
    NETWORK: ClassVar["RetryConfig"]
    DEFAULT: ClassVar["RetryConfig"]

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def next_delay(self, delay: float) -> float:
        return min(delay * self.backoff_multiplier, self.max_delay)

    def sleep_time(self, delay: float) -> float:
        if not self.jitter:
            return delay
        return delay * random.uniform(0.5, 1.5)


# Cheap idempotent checks (connect, file_exists)
RetryConfig.QUICK = RetryConfig(max_attempts=2, base_delay=0.2, max_delay=2.0)
# File transfers and directory mirroring
RetryConfig.PATIENT = RetryConfig(
    max_attempts=5, base_delay=2.0, max_delay=60.0, backoff_multiplier=1.5
)
# Interactive commands
RetryConfig.NETWORK = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=10.0)
RetryConfig.DEFAULT = RetryConfig()


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether an error is transient.

    Typed remote errors answer for themselves. Anything else is classified
    from its message, and unrecognized errors are not retried.
    """
    if isinstance(error, AutomationError):
        return False
    if isinstance(error, RemoteError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return True

    text = str(error).lower()
    if any(word in text for word in _PERMANENT_KEYWORDS):
        return False
    return any(word in text for word in _TRANSIENT_KEYWORDS)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig = RetryConfig.DEFAULT,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    description: Optional[str] = None,
) -> T:
    """
    Await ``operation()`` until it succeeds or the attempt budget runs out.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        config: Backoff parameters
        is_retryable: Classifier; a False answer stops retrying at once
        description: Label used in log messages

    Returns:
        The first successful result.

    Raises:
        The last exception raised by ``operation``.
    """
    label = description or getattr(operation, "__name__", "operation")
    delay = config.base_delay
    attempt = 1

    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                logger.debug(f"{label}: non-retryable error on attempt {attempt}: {e}")
                raise
            if attempt >= config.max_attempts:
                logger.warning(f"{label}: giving up after {attempt} attempts: {e}")
                raise

            wait = config.sleep_time(delay)
            logger.debug(
                f"{label}: attempt {attempt}/{config.max_attempts} failed ({e}), "
                f"retrying in {wait:.2f}s"
            )
            await asyncio.sleep(wait)
            delay = config.next_delay(delay)
            attempt += 1
