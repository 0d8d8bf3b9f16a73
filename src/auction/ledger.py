"""
Bid Ledger: per-auction, append-only, totally ordered bid records.

Write path (place):
1. Optimistic pre-checks against the auction metadata (exists, open, >= minimum)
2. Join the auction's queue lock under <root>/locks/<auction_id>
3. Inside the lock: re-check expiry, recompute the highest price from the
   ledger itself, reject anything that does not beat it
4. Append the bid as a sequential child of <root>/bids/<auction_id>
5. Release the lock on every exit path

The sequence suffix assigned in step 4 is the authoritative order of the
ledger. Reads take no lock: each bid is a single atomic node creation, so a
reader sees the ledger before or after a write, never in between.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from coordination.client import CoordinationClient, NoNodeError, parse_sequence
from coordination.lock import QueueLock
from coordination.namespace import BID_PREFIX, NamespaceLayout
from observability import metrics
from observability.tracing import create_span

from .catalog import AuctionCatalog
from .errors import (
    AuctionError,
    AuctionExpired,
    AuctionNotFound,
    BidNotHighEnough,
    BidTooLow,
    Corrupt,
    CorruptAuction,
    LockTimeout,
    NoBidsYet,
    storage_errors,
)
from .models import AuctionItem, Bid, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 10.0


@dataclass
class LedgerEntry:
    """A stored bid together with its service-assigned sequence number"""

    sequence: int
    bid: Bid


class BidLedger:
    """
    Serializes bids per auction through a coordination-service queue lock.

    Bids for different auctions use different locks and never wait on each
    other.
    """

    def __init__(
        self,
        client: CoordinationClient,
        layout: NamespaceLayout,
        catalog: AuctionCatalog,
        clock: Callable = utcnow,
        lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
        identifier: str = "",
    ):
        """
        Args:
            client: Coordination session of this front-end
            layout: Namespace paths
            catalog: Source of auction metadata for validation
            clock: Returns the current UTC datetime
            lock_timeout: Default budget for place(), None to wait forever
            identifier: Written into lock queue entries (e.g. host:port)
        """
        self.client = client
        self.layout = layout
        self.catalog = catalog
        self.clock = clock
        self.lock_timeout = lock_timeout
        self.identifier = identifier

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def place(self, bid: Bid, timeout: Optional[float] = None) -> Bid:
        """
        Append a bid if it beats every bid already in the auction's ledger.

        Args:
            bid: Candidate bid
            timeout: Budget for the whole call in seconds; defaults to
                the ledger's lock_timeout

        Returns:
            The stored bid (id and timestamp filled in)

        Raises:
            InvalidRequest, AuctionNotFound, AuctionExpired, BidTooLow,
            BidNotHighEnough, LockTimeout, StorageUnavailable, CorruptAuction
        """
        if timeout is None:
            timeout = self.lock_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        auction_id = bid.auction_item_id

        with create_span("place_bid", {"auction_id": auction_id, "bid_price": bid.bid_price}):
            with metrics.MetricsContext(metrics.place_bid_latency):
                try:
                    stored = self._place(bid, deadline)
                except AuctionError as e:
                    metrics.record_bid_outcome(e.code)
                    raise
        metrics.record_bid_outcome("accepted")
        logger.info(
            f"Accepted bid {stored.id} on {auction_id}: {stored.bid_price} by {stored.participant_id}"
        )
        return stored

    def _place(self, bid: Bid, deadline: Optional[float]) -> Bid:
        bid.validate()
        auction_id = bid.auction_item_id

        # Pre-checks; may be stale by the time the lock is held
        item = self.catalog.get(auction_id)
        self._check_open(item)
        if bid.bid_price < item.minimum_bid:
            raise BidTooLow(
                f"bid {bid.bid_price} is below the minimum bid {item.minimum_bid} for {auction_id}"
            )

        container = self.layout.bids_path(auction_id)
        with storage_errors("check bid container"):
            if not self.client.exists(container):
                raise CorruptAuction(f"auction {auction_id} has no bid container")

        lock = QueueLock(self.client, self.layout.lock_path(auction_id), self.identifier)
        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)

        with create_span("acquire_lock", {"auction_id": auction_id}):
            with metrics.MetricsContext(metrics.lock_wait_latency):
                with storage_errors("acquire lock"):
                    acquired = lock.acquire(timeout=remaining)
        if not acquired:
            raise LockTimeout(f"timed out waiting for the write lock on {auction_id}")

        try:
            self._check_open(item)

            entries = self.entries(auction_id)
            if entries:
                floor = max(e.bid.bid_price for e in entries)
            else:
                floor = item.minimum_bid
            if bid.bid_price <= floor:
                raise BidNotHighEnough(
                    f"bid {bid.bid_price} does not exceed the current highest {floor} for {auction_id}"
                )

            stored = bid.stamped(self.clock())
            with storage_errors("append bid"):
                node = self.client.create(
                    self.layout.bid_prefix(auction_id), stored.to_json(), sequential=True
                )
            logger.debug(f"Appended {node}")
            return stored
        finally:
            lock.release()

    def _check_open(self, item: AuctionItem) -> None:
        if item.is_expired(self.clock()):
            raise AuctionExpired(f"auction {item.id} expired at {item.expiry_time.isoformat()}")

    # ------------------------------------------------------------------
    # Read path (lock-free)
    # ------------------------------------------------------------------

    def entries(self, auction_id: str) -> List[LedgerEntry]:
        """
        Ledger contents in sequence order, with sequence numbers.

        Records that vanish or fail to deserialize are skipped; corrupt ones
        are logged and counted.

        Raises:
            AuctionNotFound: No bid container and no auction metadata
            CorruptAuction: Auction metadata exists but its bid container does not
            StorageUnavailable: Coordination service unreachable
        """
        try:
            container = self.layout.bids_path(auction_id)
        except ValueError:
            raise AuctionNotFound(f"auction {auction_id!r} not found")

        with storage_errors("read ledger"):
            try:
                names = self.client.children(container)
            except NoNodeError:
                if self.catalog.exists(auction_id):
                    raise CorruptAuction(f"auction {auction_id} has no bid container")
                raise AuctionNotFound(f"auction {auction_id} not found")

            entries = []
            for name in sorted((n for n in names if n.startswith(BID_PREFIX)), key=parse_sequence):
                try:
                    raw = self.client.get(f"{container}/{name}")
                except NoNodeError:
                    continue
                try:
                    entries.append(LedgerEntry(parse_sequence(name), Bid.from_json(raw)))
                except Corrupt as e:
                    metrics.corrupt_records_total.labels(kind="bid").inc()
                    logger.warning(f"Skipping unreadable bid {name} in {auction_id}: {e}")
        return entries

    def history(self, auction_id: str) -> List[Bid]:
        """All bids in acceptance order (service-assigned sequence, not timestamp)."""
        return [e.bid for e in self.entries(auction_id)]

    def highest_bid(self, auction_id: str) -> Bid:
        """
        The bid with the maximum price.

        Compares prices rather than trusting append order.

        Raises:
            AuctionNotFound, NoBidsYet, CorruptAuction, StorageUnavailable
        """
        bids = self.history(auction_id)
        if not bids:
            raise NoBidsYet(f"no bids found for auction {auction_id}")
        return max(bids, key=lambda b: b.bid_price)
