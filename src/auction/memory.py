"""
Memory Store: single-process reference implementation of AuctionStore.

Same validation, ordering and error behaviour as the coordinated store,
guarded by one local lock. Not shared between processes.
"""

import threading
from typing import Callable, Dict, List, Optional

from observability import metrics

from .errors import (
    AlreadyExists,
    AuctionError,
    AuctionExpired,
    AuctionNotFound,
    BidNotHighEnough,
    BidTooLow,
    NoBidsYet,
)
from .models import AuctionItem, Bid, utcnow
from .store import AuctionStore


class MemoryStore(AuctionStore):
    def __init__(self, clock: Callable = utcnow):
        self.clock = clock
        self._auctions: Dict[str, AuctionItem] = {}
        self._bids: Dict[str, List[Bid]] = {}
        self._lock = threading.Lock()

    def create_auction(self, item: AuctionItem) -> AuctionItem:
        item.validate()
        stored = item.stamped(self.clock())
        with self._lock:
            if stored.id in self._auctions:
                raise AlreadyExists(f"auction {stored.id} already exists")
            self._auctions[stored.id] = stored
            self._bids[stored.id] = []
        metrics.auctions_created_total.inc()
        return stored

    def list_auctions(self) -> List[AuctionItem]:
        with self._lock:
            items = list(self._auctions.values())
        items.sort(key=lambda i: (i.created_at, i.id))
        return items

    def get_auction(self, auction_id: str) -> AuctionItem:
        with self._lock:
            item = self._auctions.get(auction_id)
        if item is None:
            raise AuctionNotFound(f"auction {auction_id} not found")
        return item

    def place_bid(self, bid: Bid, timeout: Optional[float] = None) -> Bid:
        try:
            stored = self._place(bid)
        except AuctionError as e:
            metrics.record_bid_outcome(e.code)
            raise
        metrics.record_bid_outcome("accepted")
        return stored

    def _place(self, bid: Bid) -> Bid:
        bid.validate()
        with self._lock:
            item = self._auctions.get(bid.auction_item_id)
            if item is None:
                raise AuctionNotFound(f"auction {bid.auction_item_id} not found")
            if item.is_expired(self.clock()):
                raise AuctionExpired(f"auction {item.id} expired at {item.expiry_time.isoformat()}")
            if bid.bid_price < item.minimum_bid:
                raise BidTooLow(f"bid {bid.bid_price} is below the minimum bid {item.minimum_bid}")

            bids = self._bids[item.id]
            floor = max((b.bid_price for b in bids), default=item.minimum_bid)
            if bid.bid_price <= floor:
                raise BidNotHighEnough(f"bid {bid.bid_price} does not exceed the current highest {floor}")

            stored = bid.stamped(self.clock())
            bids.append(stored)
            return stored

    def get_highest_bid(self, auction_id: str) -> Bid:
        bids = self.get_bid_history(auction_id)
        if not bids:
            raise NoBidsYet(f"no bids found for auction {auction_id}")
        return max(bids, key=lambda b: b.bid_price)

    def get_bid_history(self, auction_id: str) -> List[Bid]:
        with self._lock:
            bids = self._bids.get(auction_id)
            if bids is None:
                raise AuctionNotFound(f"auction {auction_id} not found")
            return list(bids)
