"""Prometheus metrics for the auction ledger.

Covers bid outcomes, lock contention, ledger degradation (corrupt or
orphaned records) and coordination-service failures.
"""

from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)
import time
from functools import wraps


# ============================================================================
# CORE METRICS
# ============================================================================

bids_total = Counter(
    "auction_bids_total",
    "Bid placement attempts by outcome",
    ["outcome"],  # accepted, bid_too_low, bid_not_high_enough, auction_expired, ...
)

auctions_created_total = Counter(
    "auction_auctions_created_total", "Auctions created through this process"
)

place_bid_latency = Histogram(
    "auction_place_bid_latency_seconds",
    "End-to-end time to place a bid, including the lock wait",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

lock_wait_latency = Histogram(
    "auction_lock_wait_seconds",
    "Time spent queued for an auction's write lock",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0, 10.0],
)

create_auction_latency = Histogram(
    "auction_create_latency_seconds",
    "Time to write an auction and its bid container",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0],
)

corrupt_records_total = Counter(
    "auction_corrupt_records_total",
    "Stored records skipped because they failed to deserialize",
    ["kind"],  # auction, bid
)

orphaned_auctions_total = Counter(
    "auction_orphaned_auctions_total",
    "Auction metadata left without a bid container after failed compensation",
)

storage_errors_total = Counter(
    "auction_storage_errors_total",
    "Coordination service failures surfaced as StorageUnavailable",
    ["operation"],
)


# ============================================================================
# HELPERS
# ============================================================================


def track_time(histogram):
    """
    Decorator to record a function's execution time.

    Args:
        histogram: Prometheus Histogram to record time

    Example:
        @track_time(create_auction_latency)
        def create(item):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                histogram.observe(time.perf_counter() - start_time)

        return wrapper

    return decorator


class MetricsContext:
    """
    Context manager recording the duration of a block.

    Example:
        with MetricsContext(lock_wait_latency):
            lock.acquire(timeout)
    """

    def __init__(self, histogram):
        self.histogram = histogram
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time
        self.histogram.observe(self.duration)
        return False


def record_bid_outcome(outcome: str) -> None:
    bids_total.labels(outcome=outcome).inc()


def get_sample(name: str, labels=None) -> float:
    """Current value of a sample in the default registry (0.0 if never set)."""
    value = REGISTRY.get_sample_value(name, labels or {})
    return value if value is not None else 0.0


def render_latest():
    """Return (payload, content type) for a /metrics endpoint."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
