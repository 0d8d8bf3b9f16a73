"""
Auction Models: AuctionItem and Bid records plus their JSON encoding.

Records are stored as UTF-8 JSON in coordination nodes and must round-trip
every field. Timestamps are timezone-aware UTC and encoded as ISO-8601.
"""

import json
import math
import uuid
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .errors import Corrupt, InvalidRequest


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(value))


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else _as_utc(value).isoformat()


def _check_id(value: Optional[str], field_name: str) -> None:
    if value is not None and (not value or "/" in value or value in (".", "..")):
        raise InvalidRequest(f"{field_name} must be a non-empty string without '/'")


@dataclass
class AuctionItem:
    """Auction metadata; written once, never mutated"""

    name: str
    minimum_bid: float
    expiry_time: Optional[datetime]
    description: str = ""
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def validate(self) -> None:
        """
        Raises:
            InvalidRequest: name empty, minimum_bid not positive, or expiry unset
        """
        if not self.name:
            raise InvalidRequest("name is required")
        if not (math.isfinite(self.minimum_bid) and self.minimum_bid > 0):
            raise InvalidRequest("minimum_bid must be a finite number greater than zero")
        if self.expiry_time is None:
            raise InvalidRequest("expiry_time is required")
        _check_id(self.id, "id")

    def is_expired(self, now: datetime) -> bool:
        """Closed from the expiry instant onwards."""
        return now >= _as_utc(self.expiry_time)

    def stamped(self, now: datetime) -> "AuctionItem":
        """Copy with an id (if missing) and the creation time assigned."""
        return replace(
            self,
            id=self.id or new_id(),
            created_at=now,
            expiry_time=_as_utc(self.expiry_time),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["expiry_time"] = _format_time(self.expiry_time)
        data["created_at"] = _format_time(self.created_at)
        return data

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuctionItem":
        return cls(
            id=data.get("id"),
            name=data["name"],
            description=data.get("description", ""),
            minimum_bid=float(data["minimum_bid"]),
            expiry_time=_parse_time(data["expiry_time"]),
            created_at=_parse_time(data.get("created_at")),
        )

    @classmethod
    def from_json(cls, raw: bytes) -> "AuctionItem":
        """
        Raises:
            Corrupt: If the payload is not a valid auction record
        """
        try:
            return cls.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise Corrupt(f"undecodable auction record: {e}") from e


@dataclass
class Bid:
    """One entry in an auction's ledger; append-only"""

    participant_id: str
    auction_item_id: str
    bid_price: float
    id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def validate(self) -> None:
        if not self.participant_id:
            raise InvalidRequest("participant_id is required")
        if not self.auction_item_id:
            raise InvalidRequest("auction_item_id is required")
        if not (math.isfinite(self.bid_price) and self.bid_price > 0):
            raise InvalidRequest("bid_price must be a finite number greater than zero")
        _check_id(self.id, "id")

    def stamped(self, now: datetime) -> "Bid":
        """Copy with id and timestamp filled in where the caller left them out."""
        return replace(
            self,
            id=self.id or new_id(),
            timestamp=_as_utc(self.timestamp) if self.timestamp else now,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _format_time(self.timestamp)
        return data

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bid":
        return cls(
            id=data.get("id"),
            participant_id=data["participant_id"],
            auction_item_id=data["auction_item_id"],
            bid_price=float(data["bid_price"]),
            timestamp=_parse_time(data.get("timestamp")),
        )

    @classmethod
    def from_json(cls, raw: bytes) -> "Bid":
        try:
            return cls.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise Corrupt(f"undecodable bid record: {e}") from e
