"""Retry-with-exponential-backoff wrapper for storage calls."""

import logging
import time
from typing import Callable, Optional, TypeVar

from .config import RetryConfig
from .exceptions import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    operation: Callable[[], T],
    retry: Optional[RetryConfig] = None,
    description: str = "storage call",
    retry_on: tuple[type[BaseException], ...] = (TransientStorageError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying transient failures.

    The delay starts at ``initial_delay_sec`` and doubles after every failed
    attempt, capped at ``max_delay_sec``. The last failure is re-raised.

    Args:
        operation: Zero-argument callable to run
        retry: Attempt and delay limits
        description: Used in log lines
        retry_on: Exception types worth retrying
        sleep: Injected for tests

    Returns:
        Whatever ``operation`` returns
    """
    retry = retry or RetryConfig()
    attempts = max(1, retry.max_attempts)
    delay = retry.initial_delay_sec

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except retry_on as e:
            if attempt == attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {e}; "
                f"retrying in {delay:.2f}s"
            )
            sleep(delay)
            delay = min(delay * 2, retry.max_delay_sec)

    raise AssertionError("unreachable")
