"""
Exponential Backoff: retry delays with randomized jitter.

Shared by the etcd sequence-counter retry loop and the caller-side
retry helper for unavailable storage.
"""

import random
from typing import Iterator, Optional


def calculate_backoff(
    attempt: int, base: float = 0.05, max_delay: float = 2.0, jitter: float = 0.05
) -> float:
    """
    Calculate exponential backoff with jitter.

    Args:
        attempt: Retry attempt number (0-indexed)
        base: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter: Jitter range in seconds (±jitter)

    Returns:
        Delay in seconds, never negative
    """
    capped = min(base * (2**attempt), max_delay)
    return max(0.0, capped + random.uniform(-jitter, jitter))


def backoff_delays(
    base: float = 0.05,
    max_delay: float = 2.0,
    jitter: float = 0.05,
    attempts: Optional[int] = None,
) -> Iterator[float]:
    """
    Yield successive backoff delays.

    Args:
        base: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter: Jitter range in seconds
        attempts: Number of delays to yield, None for an endless stream
    """
    attempt = 0
    while attempts is None or attempt < attempts:
        yield calculate_backoff(attempt, base, max_delay, jitter)
        attempt += 1
