"""
Auction storage errors.

Every storage implementation raises these and nothing else across its
public surface. `retryable` tells the caller whether repeating the same
request can succeed: validation failures are permanent, timeouts and
unavailability are not.
"""

from contextlib import contextmanager

from coordination.client import ConnectionLossError
from observability import metrics


class AuctionError(Exception):
    """Base class for storage-contract failures"""

    code = "auction_error"
    retryable = False


class InvalidRequest(AuctionError):
    """Entity fails field validation (empty name, non-positive price, ...)"""

    code = "invalid_request"


class NotFound(AuctionError):
    code = "not_found"


class AuctionNotFound(NotFound):
    code = "auction_not_found"


class NoBidsYet(NotFound):
    code = "no_bids"


class AlreadyExists(AuctionError):
    code = "already_exists"


class AuctionExpired(AuctionError):
    code = "auction_expired"


class BidTooLow(AuctionError):
    """Bid is below the auction's minimum bid"""

    code = "bid_too_low"


class BidNotHighEnough(AuctionError):
    """Bid does not exceed the current highest bid"""

    code = "bid_not_high_enough"


class LockTimeout(AuctionError):
    """Gave up waiting for the auction's write lock"""

    code = "lock_timeout"
    retryable = True


class StorageUnavailable(AuctionError):
    """Coordination service unreachable or session lost"""

    code = "storage_unavailable"
    retryable = True


class Corrupt(AuctionError):
    """A stored record fails to deserialize"""

    code = "corrupt_record"


class CorruptAuction(Corrupt):
    """Auction metadata exists but its bid container does not"""

    code = "corrupt_auction"


@contextmanager
def storage_errors(operation: str):
    """Translate coordination connection failures into StorageUnavailable."""
    try:
        yield
    except ConnectionLossError as e:
        metrics.storage_errors_total.labels(operation=operation).inc()
        raise StorageUnavailable(f"{operation}: {e}") from e
