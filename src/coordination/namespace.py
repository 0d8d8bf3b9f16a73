"""
Namespace Layout: fixed path scheme under a configurable root.

    <root>/auctions/<auction_id>    serialized AuctionItem
    <root>/bids/<auction_id>/bid-N  one serialized Bid per sequential child
    <root>/locks/<auction_id>/...   lock queue entries only, never business data
"""

import logging
from dataclasses import dataclass

from .client import CoordinationClient, NodeExistsError, join_path

logger = logging.getLogger(__name__)

DEFAULT_ROOT = "/auction-system"

BID_PREFIX = "bid-"


@dataclass(frozen=True)
class NamespaceLayout:
    """Pure path derivation; holds no connection or state."""

    root: str = DEFAULT_ROOT

    def __post_init__(self):
        if not self.root.startswith("/") or self.root == "/":
            raise ValueError(f"Namespace root must be an absolute, non-root path: {self.root!r}")
        object.__setattr__(self, "root", self.root.rstrip("/"))

    @property
    def auctions(self) -> str:
        return join_path(self.root, "auctions")

    @property
    def bids(self) -> str:
        return join_path(self.root, "bids")

    @property
    def locks(self) -> str:
        return join_path(self.root, "locks")

    def auction_path(self, auction_id: str) -> str:
        return join_path(self.auctions, _segment(auction_id))

    def bids_path(self, auction_id: str) -> str:
        return join_path(self.bids, _segment(auction_id))

    def bid_prefix(self, auction_id: str) -> str:
        """Prefix handed to sequential creation for a new bid record."""
        return join_path(self.bids_path(auction_id), BID_PREFIX)

    def lock_path(self, auction_id: str) -> str:
        return join_path(self.locks, _segment(auction_id))

    def containers(self):
        return [self.root, self.auctions, self.bids, self.locks]

    def ensure(self, client: CoordinationClient) -> None:
        """
        Create the root and the three top-level containers.

        Idempotent, and safe when several front-ends start at once: losing a
        creation race counts as success.
        """
        client.ensure_path(self.root)
        for path in self.containers()[1:]:
            try:
                client.create(path)
            except NodeExistsError:
                pass
        logger.info(f"Namespace ready under {self.root}")


def _segment(auction_id: str) -> str:
    if not auction_id or "/" in auction_id or auction_id in (".", ".."):
        raise ValueError(f"Invalid auction id: {auction_id!r}")
    return auction_id
