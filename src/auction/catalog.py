"""
Auction Catalog: auction metadata nodes on the coordination service.

Low contention (each auction is written once), so no locking.
"""

import logging
from typing import Callable, List

from coordination.client import CoordinationClient, NodeExistsError, NoNodeError
from coordination.namespace import NamespaceLayout
from observability import metrics

from .errors import AlreadyExists, AuctionNotFound, Corrupt, StorageUnavailable, storage_errors
from .models import AuctionItem, utcnow

logger = logging.getLogger(__name__)


class AuctionCatalog:
    """
    Create, read and list auctions.

    Creation writes the metadata node and then the empty bid container. The
    two writes are not atomic: if the second fails the first is deleted
    again, and if that delete fails too the auction is left orphaned (see
    BidLedger, which reports it as CorruptAuction).
    """

    def __init__(
        self,
        client: CoordinationClient,
        layout: NamespaceLayout,
        clock: Callable = utcnow,
    ):
        self.client = client
        self.layout = layout
        self.clock = clock

    @metrics.track_time(metrics.create_auction_latency)
    def create(self, item: AuctionItem) -> AuctionItem:
        """
        Store a new auction.

        Args:
            item: Auction to create; id is generated when absent

        Returns:
            Stored item with id and created_at set

        Raises:
            InvalidRequest: Field validation failed
            AlreadyExists: Id already in use
            StorageUnavailable: Coordination service unreachable
        """
        item.validate()
        stored = item.stamped(self.clock())
        auction_path = self.layout.auction_path(stored.id)

        with storage_errors("create auction"):
            try:
                self.client.create(auction_path, stored.to_json())
            except NodeExistsError:
                raise AlreadyExists(f"auction {stored.id} already exists")

        try:
            with storage_errors("create bid container"):
                self.client.create(self.layout.bids_path(stored.id))
        except (StorageUnavailable, NodeExistsError, NoNodeError) as e:
            self._compensate(auction_path, stored.id)
            if isinstance(e, StorageUnavailable):
                raise
            raise StorageUnavailable(f"could not create bid container for {stored.id}: {e}") from e

        metrics.auctions_created_total.inc()
        logger.info(f"Created auction {stored.id} ({stored.name}, min {stored.minimum_bid})")
        return stored

    def _compensate(self, auction_path: str, auction_id: str) -> None:
        try:
            self.client.delete(auction_path)
            logger.warning(f"Rolled back auction {auction_id} after bid container failure")
        except Exception as e:
            metrics.orphaned_auctions_total.inc()
            logger.error(f"Auction {auction_id} orphaned without bid container: rollback failed: {e}")

    def get(self, auction_id: str) -> AuctionItem:
        """
        Raises:
            AuctionNotFound: No such auction
            Corrupt: Metadata node fails to deserialize
            StorageUnavailable: Coordination service unreachable
        """
        try:
            path = self.layout.auction_path(auction_id)
        except ValueError:
            raise AuctionNotFound(f"auction {auction_id!r} not found")

        with storage_errors("get auction"):
            try:
                raw = self.client.get(path)
            except NoNodeError:
                raise AuctionNotFound(f"auction {auction_id} not found")
        return AuctionItem.from_json(raw)

    def exists(self, auction_id: str) -> bool:
        with storage_errors("check auction"):
            return self.client.exists(self.layout.auction_path(auction_id))

    def list(self) -> List[AuctionItem]:
        """
        Snapshot of every readable auction, oldest first.

        Best effort: entries deleted mid-listing or failing to deserialize
        are skipped (the latter logged and counted).
        """
        with storage_errors("list auctions"):
            names = self.client.children(self.layout.auctions)

            items = []
            for name in names:
                try:
                    items.append(AuctionItem.from_json(self.client.get(self.layout.auction_path(name))))
                except NoNodeError:
                    continue
                except Corrupt as e:
                    metrics.corrupt_records_total.labels(kind="auction").inc()
                    logger.warning(f"Skipping unreadable auction {name}: {e}")

        items.sort(key=lambda i: (i.created_at is None, i.created_at, i.id))
        return items
