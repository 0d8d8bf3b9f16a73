"""
Coordinated Store: the storage contract on a coordination service.

Any number of front-end processes can each hold one of these against the
same service and namespace root; they share no in-process state.
"""

import logging
from typing import Callable, List, Optional

from coordination.client import CoordinationClient
from coordination.namespace import NamespaceLayout

from .catalog import AuctionCatalog
from .errors import storage_errors
from .ledger import BidLedger, DEFAULT_LOCK_TIMEOUT
from .models import AuctionItem, Bid, utcnow
from .store import AuctionStore

logger = logging.getLogger(__name__)


class CoordinatedStore(AuctionStore):
    """AuctionStore backed by AuctionCatalog + BidLedger"""

    def __init__(
        self,
        client: CoordinationClient,
        layout: Optional[NamespaceLayout] = None,
        clock: Callable = utcnow,
        lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
        identifier: str = "",
    ):
        """
        Initialize the store and make sure the namespace containers exist.

        Args:
            client: Coordination session owned by this store (closed with it)
            layout: Namespace paths, defaults to the /auction-system root
            clock: Returns the current UTC datetime
            lock_timeout: Default place_bid budget in seconds
            identifier: Tag for this front-end in lock queue entries

        Raises:
            StorageUnavailable: Coordination service unreachable
        """
        self.client = client
        self.layout = layout or NamespaceLayout()
        with storage_errors("prepare namespace"):
            self.layout.ensure(client)

        self.catalog = AuctionCatalog(client, self.layout, clock=clock)
        self.ledger = BidLedger(
            client,
            self.layout,
            self.catalog,
            clock=clock,
            lock_timeout=lock_timeout,
            identifier=identifier,
        )

    def create_auction(self, item: AuctionItem) -> AuctionItem:
        return self.catalog.create(item)

    def list_auctions(self) -> List[AuctionItem]:
        return self.catalog.list()

    def get_auction(self, auction_id: str) -> AuctionItem:
        return self.catalog.get(auction_id)

    def place_bid(self, bid: Bid, timeout: Optional[float] = None) -> Bid:
        return self.ledger.place(bid, timeout=timeout)

    def get_highest_bid(self, auction_id: str) -> Bid:
        return self.ledger.highest_bid(auction_id)

    def get_bid_history(self, auction_id: str) -> List[Bid]:
        return self.ledger.history(auction_id)

    def close(self) -> None:
        self.client.close()
        logger.info("Coordinated store closed")
