"""
Session lease handling of the etcd backend, without a live etcd.

FakeEtcd implements the slice of the etcd3 client API the backend uses
(transactions with version/create/mod guards, leases, prefix reads,
watch_once) so lease expiry can be triggered on demand.

Tests:
- An expired lease is replaced on the next ephemeral create
- Expiry noticed by a failed put (gRPC NOT_FOUND) as well as by the keepalive
- Raw gRPC errors surface as StorageUnavailable, not as unshaped errors
"""

import sys
import os
import itertools
import threading
import time
from datetime import timedelta
from types import SimpleNamespace

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import etcd3.events
import etcd3.exceptions
import grpc
import pytest

from auction.coordinated import CoordinatedStore
from auction.errors import StorageUnavailable
from auction.models import AuctionItem, Bid
from coordination.client import ConnectionLossError
from coordination.etcd_client import EtcdCoordinationClient
from coordination.namespace import NamespaceLayout

LAYOUT = NamespaceLayout("/test")


class FakeRpcError(grpc.RpcError):
    def __init__(self, status):
        super().__init__(status.name)
        self.status = status

    def code(self):
        return self.status


class _Deleted(etcd3.events.DeleteEvent):
    def __init__(self):
        pass


class _Target:
    """Left-hand side of a transaction guard, e.g. `txn.create(key) == 0`"""

    __hash__ = None

    def __init__(self, etcd, field, key):
        self.etcd, self.field, self.key = etcd, field, key

    def __eq__(self, other):
        return lambda: self.etcd._field(self.key, self.field) == other

    def __gt__(self, other):
        return lambda: self.etcd._field(self.key, self.field) > other


class _Transactions:
    def __init__(self, etcd):
        self.etcd = etcd

    def version(self, key):
        return _Target(self.etcd, "version", key)

    def create(self, key):
        return _Target(self.etcd, "create", key)

    def mod(self, key):
        return _Target(self.etcd, "mod", key)

    def put(self, key, value, lease=None):
        return ("put", key, value, lease)


class FakeLease:
    def __init__(self, etcd, lease_id, ttl):
        self.etcd, self.id, self.ttl = etcd, lease_id, ttl

    def refresh(self):
        alive = self.id in self.etcd.live_leases
        return [SimpleNamespace(TTL=self.ttl if alive else -1)]

    def revoke(self):
        self.etcd.expire(self)


class FakeEtcd:
    def __init__(self):
        self.kv = {}  # key -> {"value", "create", "mod", "version", "lease"}
        self.revision = 1
        self.live_leases = set()
        self.lease_ids = itertools.count(1)
        self.fail_next = None
        self.cond = threading.Condition()
        self.transactions = _Transactions(self)

    def _field(self, key, field):
        record = self.kv.get(key)
        return record[field] if record else 0

    def _maybe_fail(self):
        error, self.fail_next = self.fail_next, None
        if error is not None:
            raise error

    def transaction(self, compare, success, failure):
        with self.cond:
            self._maybe_fail()
            if not all(check() for check in compare):
                return False, []
            for _, _, _, lease in success:
                if lease is not None and lease.id not in self.live_leases:
                    raise FakeRpcError(grpc.StatusCode.NOT_FOUND)
            self.revision += 1
            for _, key, value, lease in success:
                if isinstance(value, str):
                    value = value.encode()
                record = self.kv.get(key)
                self.kv[key] = {
                    "value": value,
                    "create": record["create"] if record else self.revision,
                    "mod": self.revision,
                    "version": record["version"] + 1 if record else 1,
                    "lease": lease.id if lease is not None else None,
                }
            return True, []

    def get(self, key):
        with self.cond:
            self._maybe_fail()
            record = self.kv.get(key)
            if record is None:
                return None, None
            meta = SimpleNamespace(
                mod_revision=record["mod"],
                response_header=SimpleNamespace(revision=self.revision),
            )
            return record["value"], meta

    def get_prefix(self, prefix, keys_only=False, limit=None):
        with self.cond:
            keys = sorted(k for k in self.kv if k.startswith(prefix))
        if limit:
            keys = keys[:limit]
        return [(None, SimpleNamespace(key=k.encode())) for k in keys]

    def delete(self, key):
        with self.cond:
            if self.kv.pop(key, None) is None:
                return False
            self.revision += 1
            self.cond.notify_all()
            return True

    def lease(self, ttl):
        with self.cond:
            lease = FakeLease(self, next(self.lease_ids), ttl)
            self.live_leases.add(lease.id)
            return lease

    def expire(self, lease):
        """Drop a lease and every key attached to it, as etcd does on expiry."""
        with self.cond:
            self.live_leases.discard(lease.id)
            for key in [k for k, r in self.kv.items() if r["lease"] == lease.id]:
                del self.kv[key]
            self.revision += 1
            self.cond.notify_all()

    def watch_once(self, key, timeout=None, start_revision=None):
        with self.cond:
            if not self.cond.wait_for(lambda: key not in self.kv, timeout):
                raise etcd3.exceptions.WatchTimedOut()
            return _Deleted()

    def close(self):
        pass


@pytest.fixture
def etcd():
    return FakeEtcd()


@pytest.fixture
def make_store(etcd, clock):
    stores = []

    def make(session_ttl=30):
        client = EtcdCoordinationClient(etcd, session_ttl=session_ttl)
        store = CoordinatedStore(client, LAYOUT, clock=clock, lock_timeout=5)
        stores.append(store)
        return store

    yield make
    for store in stores:
        store.close()


def new_auction(store, clock):
    return store.create_auction(
        AuctionItem(name="Lamp", minimum_bid=10, expiry_time=clock() + timedelta(hours=1))
    )


class TestSessionLease:
    def test_bids_through_etcd_backend(self, make_store, clock):
        a, b = make_store(), make_store()
        item = new_auction(a, clock)

        a.place_bid(Bid("alice", item.id, 15))
        b.place_bid(Bid("bob", item.id, 20))

        assert [x.bid_price for x in a.get_bid_history(item.id)] == [15, 20]

    def test_expired_lease_replaced_after_failed_put(self, make_store, etcd, clock):
        store = make_store()
        item = new_auction(store, clock)
        store.place_bid(Bid("alice", item.id, 15))
        first_lease = store.client._lease

        etcd.expire(first_lease)

        # The lock entry put fails against the dead lease
        with pytest.raises(StorageUnavailable) as exc_info:
            store.place_bid(Bid("alice", item.id, 16))
        assert exc_info.value.retryable

        store.place_bid(Bid("alice", item.id, 16))
        assert store.client._lease is not first_lease
        assert [x.bid_price for x in store.get_bid_history(item.id)] == [15, 16]

    def test_expired_lease_replaced_after_keepalive_notices(self, make_store, etcd, clock):
        store = make_store(session_ttl=1)
        item = new_auction(store, clock)
        store.place_bid(Bid("alice", item.id, 15))
        first_lease = store.client._lease

        etcd.expire(first_lease)
        deadline = time.monotonic() + 5
        while not store.client._session_lost and time.monotonic() < deadline:
            time.sleep(0.05)
        assert store.client._session_lost

        store.place_bid(Bid("alice", item.id, 16))
        assert store.client._lease is not first_lease
        assert not store.client._session_lost

    def test_raw_grpc_error_is_connection_loss(self, etcd):
        client = EtcdCoordinationClient(etcd)
        etcd.fail_next = FakeRpcError(grpc.StatusCode.INTERNAL)
        with pytest.raises(ConnectionLossError):
            client.get("/anything")

    def test_raw_grpc_error_surfaces_as_storage_unavailable(self, make_store, etcd, clock):
        store = make_store()
        item = new_auction(store, clock)

        etcd.fail_next = FakeRpcError(grpc.StatusCode.INTERNAL)
        with pytest.raises(StorageUnavailable):
            store.get_bid_history(item.id)
        assert store.get_bid_history(item.id) == []
