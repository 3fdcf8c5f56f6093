"""
Bounded exponential backoff for registry calls.

Only TransportError (timeouts, rate limits, 5xx, connection failures) is
retried. Auth failures and other 4xx responses surface immediately.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry budget for one call.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying)
        initial_interval: Delay before the first retry, in seconds
        max_interval: Upper bound for any single delay
        multiplier: Growth factor between consecutive delays
    """
    max_retries: int = 3
    initial_interval: float = 1.0
    max_interval: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def no_retry(cls) -> 'RetryPolicy':
        return cls(max_retries=0)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Delay before retry number ``attempt`` (0-based).

        A server-supplied Retry-After is honoured when it fits within
        max_interval; otherwise the exponential schedule applies.
        """
        if retry_after is not None and 0 <= retry_after <= self.max_interval:
            return float(retry_after)
        return min(self.initial_interval * (self.multiplier ** attempt), self.max_interval)


def with_retry(
    name: str,
    policy: RetryPolicy,
    fn: Callable[[], T],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds, fails permanently, or the budget runs out.

    Args:
        name: Operation name for log messages
        policy: Retry budget
        fn: Zero-argument callable performing one attempt
        sleep: Injected for tests

    Returns:
        Whatever ``fn`` returns

    Raises:
        The last TransportError once attempts are exhausted, or any
        non-retryable exception immediately.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except TransportError as e:
            if attempt >= policy.max_retries:
                if policy.max_retries:
                    logger.warning(f"{name} failed after {attempt + 1} attempts: {e}")
                raise
            delay = policy.delay_for(attempt, e.retry_after)
            logger.info(f"{name} failed ({e.kind}), retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{policy.max_retries})")
            sleep(delay)
            attempt += 1
