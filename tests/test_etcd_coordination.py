"""
Integration tests for the etcd coordination backend.

Requires a running etcd; enable with `pytest --etcd localhost:2379`.
Every test works under its own random root so runs never interfere.
"""

import sys
import os
import threading
import uuid
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

pytestmark = pytest.mark.etcd


@pytest.fixture
def connect(etcd_endpoint):
    """Factory for independent etcd sessions (one per simulated front-end)"""
    from coordination.etcd_client import EtcdCoordinationClient

    clients = []

    def make():
        client = EtcdCoordinationClient.connect([etcd_endpoint], session_ttl=5)
        clients.append(client)
        return client

    yield make
    for client in clients:
        client.close()


@pytest.fixture
def root():
    return f"/auction-test-{uuid.uuid4().hex[:8]}"


class TestEtcdNodes:
    def test_create_get_children_delete(self, connect, root):
        client = connect()
        client.create(root, b"")
        client.create(f"{root}/a", b"one")
        client.create(f"{root}/a/deep")

        assert client.get(f"{root}/a") == b"one"
        assert client.children(root) == ["a"]

        from coordination.client import NodeExistsError, NoNodeError, NotEmptyError

        with pytest.raises(NodeExistsError):
            client.create(f"{root}/a")
        with pytest.raises(NoNodeError):
            client.create(f"{root}/missing/child")
        with pytest.raises(NotEmptyError):
            client.delete(f"{root}/a")

        client.delete(f"{root}/a/deep")
        client.delete(f"{root}/a")
        assert not client.exists(f"{root}/a")

    def test_sequential_suffix_from_two_sessions(self, connect, root):
        from coordination.client import parse_sequence

        a, b = connect(), connect()
        a.create(root)
        created = [c.create(f"{root}/n-", sequential=True) for c in (a, b, a)]

        assert [parse_sequence(p) for p in created] == [0, 1, 2]
        assert sorted(a.children(root)) == ["n-0000000000", "n-0000000001", "n-0000000002"]

    def test_ephemeral_removed_on_close(self, connect, root):
        owner, observer = connect(), connect()
        owner.create(root)
        node = owner.create(f"{root}/e-", sequential=True, ephemeral=True)

        owner.close()
        assert observer.wait_for_deletion(node, timeout=10)

    def test_wait_for_deletion_times_out(self, connect, root):
        client = connect()
        client.create(root)
        assert client.wait_for_deletion(root, timeout=0.2) is False


class TestEtcdLedger:
    def test_concurrent_frontends_keep_total_order(self, connect, root):
        from auction.coordinated import CoordinatedStore
        from auction.errors import BidNotHighEnough
        from auction.models import AuctionItem, Bid
        from coordination.namespace import NamespaceLayout

        layout = NamespaceLayout(root)
        stores = [CoordinatedStore(connect(), layout, lock_timeout=20) for _ in range(4)]
        item = stores[0].create_auction(
            AuctionItem(
                name="Lamp",
                minimum_bid=10,
                expiry_time=datetime.now(timezone.utc) + timedelta(hours=1),
            )
        )

        def run(store, offset):
            for price in range(11 + offset, 40, 4):
                try:
                    store.place_bid(Bid(f"p{offset}", item.id, price))
                except BidNotHighEnough:
                    pass

        threads = [threading.Thread(target=run, args=(s, i)) for i, s in enumerate(stores)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        prices = [b.bid_price for b in stores[1].get_bid_history(item.id)]
        assert all(x < y for x, y in zip(prices, prices[1:]))
        assert prices[-1] == 39
        assert stores[2].get_highest_bid(item.id).bid_price == 39
