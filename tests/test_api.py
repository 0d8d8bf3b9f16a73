"""
Tests for the FastAPI request layer.

Runs the routes over both storage backends, plus error mapping for the
failures only the coordinated backend produces.
"""

import sys
import os
from datetime import timedelta

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest
from fastapi.testclient import TestClient

from auction.coordinated import CoordinatedStore
from auction.errors import LockTimeout
from auction.memory import MemoryStore
from coordination.namespace import NamespaceLayout
from frontend.api import create_app


@pytest.fixture(params=["memory", "coordinated"])
def store(request, clock, coordination_service):
    if request.param == "memory":
        s = MemoryStore(clock=clock)
    else:
        s = CoordinatedStore(coordination_service.session(), NamespaceLayout("/api"), clock=clock)
    yield s
    s.close()


@pytest.fixture
def api(store, clock):
    return TestClient(create_app(store, clock=clock))


def create_auction(api, clock, **overrides):
    body = {
        "name": "Lamp",
        "description": "brass",
        "minimum_bid": 10,
        "expiry_time": (clock() + timedelta(hours=1)).isoformat(),
    }
    body.update(overrides)
    return api.post("/auctions", json=body)


class TestAuctionRoutes:
    def test_create_and_fetch(self, api, clock):
        response = create_auction(api, clock)
        assert response.status_code == 201
        created = response.json()
        assert created["id"]
        assert created["minimum_bid"] == 10

        fetched = api.get(f"/auctions/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json() == created

        listed = api.get("/auctions").json()
        assert [a["id"] for a in listed] == [created["id"]]

    def test_duplicate_id_conflicts(self, api, clock):
        assert create_auction(api, clock, id="lamp").status_code == 201
        response = create_auction(api, clock, id="lamp")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "already_exists"

    @pytest.mark.parametrize(
        "overrides",
        [{"name": ""}, {"minimum_bid": 0}, {"expiry_time": "tomorrow"}],
    )
    def test_invalid_payload_is_bad_request(self, api, clock, overrides):
        response = create_auction(api, clock, **overrides)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"

    def test_infinite_minimum_bid_rejected(self, api, clock):
        expiry = (clock() + timedelta(hours=1)).isoformat()
        response = api.post(
            "/auctions",
            content=f'{{"name": "Lamp", "minimum_bid": Infinity, "expiry_time": "{expiry}"}}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"
        assert api.get("/auctions").json() == []

    def test_unknown_auction(self, api):
        response = api.get("/auctions/missing")
        assert response.status_code == 404
        assert response.json()["error"]["retryable"] is False


class TestBidRoutes:
    def test_bidding_flow(self, api, clock):
        auction_id = create_auction(api, clock).json()["id"]

        def place(price, participant="alice"):
            return api.post(
                f"/auctions/{auction_id}/bids",
                json={"participant_id": participant, "bid_price": price},
            )

        assert place(5).json()["error"]["code"] == "bid_too_low"
        accepted = place(15)
        assert accepted.status_code == 201
        assert accepted.json()["auction_item_id"] == auction_id

        rejected = place(12, "bob")
        assert rejected.status_code == 400
        assert rejected.json()["error"]["code"] == "bid_not_high_enough"
        assert place(20, "bob").status_code == 201

        history = api.get(f"/auctions/{auction_id}/history").json()
        assert [b["bid_price"] for b in history] == [15, 20]

        status = api.get(f"/auctions/{auction_id}/status").json()
        assert status["status"] == "active"
        assert status["highest_bid"]["participant_id"] == "bob"
        assert status["time_remaining"] == 3600

    def test_status_without_bids(self, api, clock):
        auction_id = create_auction(api, clock).json()["id"]
        status = api.get(f"/auctions/{auction_id}/status").json()
        assert status["highest_bid"] is None

    def test_expired_auction(self, api, clock):
        auction_id = create_auction(api, clock).json()["id"]
        clock.advance(hours=1)

        response = api.post(
            f"/auctions/{auction_id}/bids", json={"participant_id": "alice", "bid_price": 15}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "auction_expired"

        status = api.get(f"/auctions/{auction_id}/status").json()
        assert status["status"] == "expired"
        assert "time_remaining" not in status

    def test_infinite_bid_rejected_and_auction_stays_open(self, api, clock):
        auction_id = create_auction(api, clock).json()["id"]

        response = api.post(
            f"/auctions/{auction_id}/bids",
            content='{"participant_id": "eve", "bid_price": Infinity}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"
        assert api.get(f"/auctions/{auction_id}/history").json() == []

        accepted = api.post(
            f"/auctions/{auction_id}/bids", json={"participant_id": "alice", "bid_price": 1e300}
        )
        assert accepted.status_code == 201
        assert api.get(f"/auctions/{auction_id}/status").status_code == 200

    def test_bid_on_unknown_auction(self, api):
        response = api.post("/auctions/missing/bids", json={"participant_id": "a", "bid_price": 15})
        assert response.status_code == 404

    def test_history_of_unknown_auction(self, api):
        assert api.get("/auctions/missing/history").status_code == 404


class TestOperationalRoutes:
    def test_health(self, api, store):
        body = api.get("/health").json()
        assert body == {"status": "ok", "backend": type(store).__name__}

    def test_metrics(self, api):
        response = api.get("/metrics")
        assert response.status_code == 200
        assert "auction_bids_total" in response.text


class TestErrorMapping:
    def test_lock_timeout_is_retryable_503(self, clock):
        class BusyStore(MemoryStore):
            def place_bid(self, bid, timeout=None):
                raise LockTimeout("busy")

        api = TestClient(create_app(BusyStore(clock=clock), clock=clock))
        auction_id = create_auction(api, clock).json()["id"]

        response = api.post(
            f"/auctions/{auction_id}/bids", json={"participant_id": "alice", "bid_price": 15}
        )
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["error"] == {"code": "lock_timeout", "message": "busy", "retryable": True}

    def test_outage_is_503(self, clock, coordination_service):
        store = CoordinatedStore(coordination_service.session(), NamespaceLayout("/api"), clock=clock)
        api = TestClient(create_app(store, clock=clock))
        coordination_service.set_available(False)

        response = api.get("/auctions")
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "storage_unavailable"
