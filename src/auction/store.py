"""
Auction Store: the storage contract consumed by the request layer.

Two implementations satisfy it identically:
- CoordinatedStore: catalog + bid ledger on a coordination service,
  safe with any number of stateless front-ends
- MemoryStore: single-process reference behind a local lock

The backend is chosen once at startup and injected into the request layer.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .models import AuctionItem, Bid


class AuctionStore(ABC):
    """
    Storage contract for auctions and bids.

    All failures are raised as auction.errors.AuctionError subclasses.
    """

    @abstractmethod
    def create_auction(self, item: AuctionItem) -> AuctionItem:
        """
        Store a new auction.

        Returns:
            The stored item, with id and created_at assigned

        Raises:
            InvalidRequest, AlreadyExists, StorageUnavailable
        """

    @abstractmethod
    def list_auctions(self) -> List[AuctionItem]:
        """Return every readable auction, oldest first."""

    @abstractmethod
    def get_auction(self, auction_id: str) -> AuctionItem:
        """Raises AuctionNotFound."""

    @abstractmethod
    def place_bid(self, bid: Bid, timeout: Optional[float] = None) -> Bid:
        """
        Append a bid to its auction's ledger if it beats the current highest.

        Args:
            bid: Candidate bid; id and timestamp are assigned when absent
            timeout: Budget in seconds for the whole call, None for the default

        Returns:
            The stored bid

        Raises:
            InvalidRequest, AuctionNotFound, AuctionExpired, BidTooLow,
            BidNotHighEnough, LockTimeout, StorageUnavailable, CorruptAuction
        """

    @abstractmethod
    def get_highest_bid(self, auction_id: str) -> Bid:
        """Return the bid with the maximum price. Raises AuctionNotFound, NoBidsYet."""

    @abstractmethod
    def get_bid_history(self, auction_id: str) -> List[Bid]:
        """Return the auction's bids in acceptance order."""

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
