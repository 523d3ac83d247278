"""Bounded retry with exponential backoff for provider calls.

Failures are classified by type: RetryableError is transient and retried,
anything else is fatal and propagates on the first attempt.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from engine.errors import RetryableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryPolicy:
    """Retry policy for transient provider failures.

    Attributes:
        attempts: Total attempts including the first (1 disables retries)
        delay: Delay before the second attempt, in seconds
        max_delay: Upper bound for any single delay
        multiplier: Growth factor between delays
    """
    attempts: int = 3
    delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    def delays(self) -> list[float]:
        """Backoff delays between attempts."""
        out = []
        delay = self.delay
        for _ in range(max(self.attempts - 1, 0)):
            out.append(min(delay, self.max_delay))
            delay *= self.multiplier
        return out

    def call(
        self,
        fn: Callable[[], T],
        cancelled: Optional[threading.Event] = None,
        describe: str = 'operation',
    ) -> T:
        """Call fn, retrying on RetryableError.

        Backoff waits end early when cancelled is set; the last error is
        then raised without further attempts.

        Raises:
            RetryableError: If every attempt failed with a retryable error
            Exception: Any non-retryable error from fn, unchanged
        """
        delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except RetryableError as e:
                if attempt > len(delays):
                    logger.warning(f"{describe} failed after {attempt} attempts: {e}")
                    raise
                wait = delays[attempt - 1]
                logger.info(f"{describe} failed (attempt {attempt}/{self.attempts}), retrying in {wait:.1f}s: {e}")
                if cancelled is not None:
                    if cancelled.wait(wait):
                        logger.info(f"{describe}: retry abandoned, run cancelled")
                        raise
                else:
                    time.sleep(wait)
