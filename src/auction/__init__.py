"""
Auction module: auction catalog, bid ledger and the storage contract.
"""

from .models import AuctionItem, Bid
from .store import AuctionStore
from .catalog import AuctionCatalog
from .ledger import BidLedger, LedgerEntry
from .coordinated import CoordinatedStore
from .memory import MemoryStore
from .retry import retry_unavailable
from . import errors

__all__ = [
    "AuctionItem",
    "Bid",
    "AuctionStore",
    "AuctionCatalog",
    "BidLedger",
    "LedgerEntry",
    "CoordinatedStore",
    "MemoryStore",
    "retry_unavailable",
    "errors",
]
