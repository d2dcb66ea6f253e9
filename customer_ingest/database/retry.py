"""
Retry policy for bringing a batch sink to a ready state.

Only sink acquisition is retried. Batch delivery never goes through here.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type, TypeVar

from customer_ingest.exceptions import SinkUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')

BackoffFunction = Callable[[int], float]


def constant_backoff(delay_seconds: float) -> BackoffFunction:
    """Wait the same amount of time after every failed attempt."""
    return lambda attempt: delay_seconds


def exponential_backoff(base_seconds: float, factor: float = 2.0, max_seconds: float = 60.0) -> BackoffFunction:
    """Wait base * factor^(attempt - 1), capped at max_seconds."""
    return lambda attempt: min(base_seconds * factor ** (attempt - 1), max_seconds)


BACKOFF_STRATEGIES = {
    'constant': constant_backoff,
    'exponential': exponential_backoff,
}


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait after each failure."""

    max_attempts: int = 5
    backoff: BackoffFunction = field(default=constant_backoff(5.0))
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def from_settings(cls, max_attempts: int, delay_seconds: float, strategy: str = 'constant') -> 'RetryPolicy':
        """Build a policy from plain configuration values."""
        try:
            backoff_factory = BACKOFF_STRATEGIES[strategy.lower()]
        except KeyError:
            raise ValueError(f"Unknown backoff strategy: {strategy!r}")

        return cls(max_attempts=max_attempts, backoff=backoff_factory(delay_seconds))

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return max(0.0, float(self.backoff(attempt)))


def acquire_with_retry(
    acquire: Callable[[], T],
    policy: RetryPolicy,
    description: str = 'batch sink',
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """Call `acquire` until it succeeds or the policy runs out of attempts.

    Raises:
        SinkUnavailableError: every attempt failed.
    """
    last_error = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = acquire()
            logger.info(f"{description} ready (attempt {attempt}/{policy.max_attempts})")
            return result
        except policy.retry_on as e:
            last_error = e
            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt}/{policy.max_attempts} to open {description} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                sleep(delay)

    logger.error(f"Could not open {description} after {policy.max_attempts} attempts")
    raise SinkUnavailableError(
        f"Could not open {description} after {policy.max_attempts} attempts: {last_error}"
    ) from last_error
