"""
FastAPI request layer over an AuctionStore.

Thin adapter: decode the request, call the injected store, encode the result.
Handlers are plain `def` so FastAPI runs them in its worker threadpool; a
bid waiting for its auction's lock blocks only its own request.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from auction.errors import (
    AlreadyExists,
    AuctionError,
    Corrupt,
    InvalidRequest,
    LockTimeout,
    NoBidsYet,
    NotFound,
    StorageUnavailable,
)
from auction.models import AuctionItem, Bid, utcnow
from auction.store import AuctionStore
from observability.metrics import render_latest

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "1"


# Request models


class CreateAuctionRequest(BaseModel):
    """Body of POST /auctions"""

    id: Optional[str] = Field(None, description="Auction id; generated when absent")
    name: str = Field(..., min_length=1)
    description: str = ""
    minimum_bid: float = Field(..., gt=0, allow_inf_nan=False)
    expiry_time: datetime


class PlaceBidRequest(BaseModel):
    """Body of POST /auctions/{id}/bids; the auction id comes from the path"""

    id: Optional[str] = None
    participant_id: str = Field(..., min_length=1)
    bid_price: float = Field(..., gt=0, allow_inf_nan=False)
    timestamp: Optional[datetime] = None


def _status_for(error: AuctionError) -> int:
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, AlreadyExists):
        return 409
    if isinstance(error, (LockTimeout, StorageUnavailable)):
        return 503
    if isinstance(error, Corrupt):
        return 500
    return 400


def _error_body(code: str, message: str, retryable: bool = False) -> dict:
    return {"error": {"code": code, "message": message, "retryable": retryable}}


def create_app(store: AuctionStore, clock: Callable = utcnow) -> FastAPI:
    """
    Build the HTTP application around an already constructed store.

    Args:
        store: Storage backend (owned by the caller)
        clock: Returns the current UTC datetime, for auction status
    """
    app = FastAPI(title="Distributed Auction API", version="1.0.0")
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(AuctionError)
    async def auction_error_handler(request: Request, exc: AuctionError):
        status = _status_for(exc)
        headers = {"Retry-After": RETRY_AFTER_SECONDS} if exc.retryable else None
        if status >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=status,
            content=_error_body(exc.code, str(exc), exc.retryable),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content=_error_body(InvalidRequest.code, messages or "invalid request payload"),
        )

    @app.post("/auctions", status_code=201)
    def create_auction(request: CreateAuctionRequest):
        item = AuctionItem(
            id=request.id,
            name=request.name,
            description=request.description,
            minimum_bid=request.minimum_bid,
            expiry_time=request.expiry_time,
        )
        return store.create_auction(item).to_dict()

    @app.get("/auctions")
    def list_auctions() -> List[dict]:
        return [item.to_dict() for item in store.list_auctions()]

    @app.get("/auctions/{auction_id}")
    def get_auction(auction_id: str):
        return store.get_auction(auction_id).to_dict()

    @app.post("/auctions/{auction_id}/bids", status_code=201)
    def place_bid(auction_id: str, request: PlaceBidRequest):
        bid = Bid(
            id=request.id,
            participant_id=request.participant_id,
            auction_item_id=auction_id,
            bid_price=request.bid_price,
            timestamp=request.timestamp,
        )
        return store.place_bid(bid).to_dict()

    @app.get("/auctions/{auction_id}/status")
    def auction_status(auction_id: str):
        """Auction metadata, highest bid (if any) and whether it is still open."""
        item = store.get_auction(auction_id)
        try:
            highest = store.get_highest_bid(auction_id).to_dict()
        except NoBidsYet:
            highest = None

        now = clock()
        status = {"auction": item.to_dict(), "highest_bid": highest}
        if item.is_expired(now):
            status["status"] = "expired"
        else:
            status["status"] = "active"
            status["time_remaining"] = (item.expiry_time - now).total_seconds()
        return status

    @app.get("/auctions/{auction_id}/history")
    def bid_history(auction_id: str) -> List[dict]:
        return [bid.to_dict() for bid in store.get_bid_history(auction_id)]

    @app.get("/health")
    def health():
        return {"status": "ok", "backend": type(store).__name__}

    @app.get("/metrics")
    def metrics():
        payload, content_type = render_latest()
        return Response(content=payload, media_type=content_type)

    return app
