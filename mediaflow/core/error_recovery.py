"""Retry support for transient failures in provider and download calls.

Only errors marked ``recoverable`` (``TransientError``: timeouts, connection
drops, 5xx responses) are retried here. Provider rejections and rate limits
propagate immediately; the batch executors turn them into failed items and
apply their own cool-down.
"""

import time
import random
from dataclasses import dataclass, field
from typing import Callable, Any, Tuple, Type

from .exceptions import WorkflowEngineError, TransientError
from .logging import RetryLogger


@dataclass
class RetryConfig:
    """Exponential backoff settings."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Tuple[Type[Exception], ...] = (TransientError,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        if isinstance(exception, WorkflowEngineError):
            return exception.recoverable
        return isinstance(exception, self.retryable_exceptions)

    def get_delay(self, attempt: int) -> float:
        """Backoff before retrying after ``attempt`` (1-based)."""
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random() * 0.5
        return delay


def execute_with_retry(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    """Call ``func`` until it succeeds, raises a non-retryable error, or attempts run out."""
    retry_logger = RetryLogger(func.__name__)
    attempt = 0

    while True:
        attempt += 1
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if not config.should_retry(e, attempt):
                if attempt > 1:
                    retry_logger.gave_up(e, attempt)
                raise
            delay = config.get_delay(attempt)
            retry_logger.retrying(e, attempt, config.max_attempts, delay)
            config.sleep(delay)
            continue

        if attempt > 1:
            retry_logger.recovered(attempt)
        return result
