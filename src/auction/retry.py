"""
Caller-side retry for transient storage failures.

The store never retries internally. Callers that can afford to wait (startup,
batch tools) wrap calls here; validation failures are raised immediately
because repeating the same request cannot succeed.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from coordination.backoff import backoff_delays
from coordination.client import ConnectionLossError

from .errors import AuctionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_unavailable(
    fn: Callable[[], T],
    attempts: int = 5,
    base: float = 0.2,
    max_delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
    description: Optional[str] = None,
) -> T:
    """
    Call `fn`, retrying retryable failures with jittered exponential backoff.

    Retries AuctionError subclasses flagged `retryable` (StorageUnavailable,
    LockTimeout) and raw ConnectionLossError from the coordination layer.

    Args:
        fn: Zero-argument callable
        attempts: Total calls before giving up (>= 1)
        base: First delay in seconds
        max_delay: Delay cap in seconds
        sleep: Sleep function (injectable for tests)
        description: Label used in log messages

    Returns:
        Whatever `fn` returns

    Raises:
        The last error once attempts are exhausted, or any non-retryable error
    """
    label = description or getattr(fn, "__name__", "operation")
    delays = backoff_delays(base=base, max_delay=max_delay, jitter=base / 2, attempts=attempts - 1)

    while True:
        try:
            return fn()
        except (AuctionError, ConnectionLossError) as e:
            if isinstance(e, AuctionError) and not e.retryable:
                raise
            delay = next(delays, None)
            if delay is None:
                logger.error(f"{label} failed after {attempts} attempts: {e}")
                raise
            logger.warning(f"{label} failed ({e}); retrying in {delay:.2f}s")
            sleep(delay)
