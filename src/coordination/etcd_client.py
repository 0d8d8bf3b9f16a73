"""
etcd Coordination Client: the coordination contract on top of etcd v3.

Mapping:
- Paths are etcd keys; a node's children are the keys one level below it
- Conditional creation is an etcd transaction on create revision == 0
- Sequential suffixes come from a per-parent counter key, bumped in the same
  transaction that creates the child
- Ephemeral nodes are attached to this client's session lease, kept alive by
  a background thread; when the lease lapses etcd deletes them
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import List, Optional, Sequence, Tuple

import etcd3
import etcd3.events
import etcd3.exceptions
import grpc

from .backoff import backoff_delays
from .client import (
    CoordinationClient,
    ConnectionLossError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    format_sequence,
    parent_of,
)

logger = logging.getLogger(__name__)

# Counter keys live outside the application namespace so they never show up
# as children of an application node.
SEQUENCE_PREFIX = "/.sequence"

# Attempts at winning the counter race before reporting the service as unusable
MAX_SEQUENCE_ATTEMPTS = 64


def parse_endpoint(endpoint: str, default_port: int = 2379) -> Tuple[str, int]:
    """Split "host:port" (port optional) into a (host, port) tuple."""
    host, _, port = endpoint.strip().rpartition(":")
    if not host:
        return port, default_port
    return host, int(port)


@contextmanager
def _translate_errors(path: str):
    try:
        yield
    except (etcd3.exceptions.ConnectionFailedError, etcd3.exceptions.ConnectionTimeoutError) as e:
        raise ConnectionLossError(f"etcd unreachable: {e}", path) from e
    except etcd3.exceptions.Etcd3Exception as e:
        raise ConnectionLossError(f"etcd request failed: {e}", path) from e
    except grpc.RpcError as e:
        # etcd3 re-raises status codes it has no exception for (NOT_FOUND
        # for an expired lease, among others) as the raw gRPC error
        raise ConnectionLossError(f"etcd request failed: {_status_of(e)}", path) from e


def _status_of(error):
    code = getattr(error, "code", None)
    return code() if callable(code) else None


class EtcdCoordinationClient(CoordinationClient):
    """
    Coordination session backed by an etcd cluster.

    One instance per front-end process; the session lease is shared by every
    ephemeral node (lock queue entry) this process creates.
    """

    def __init__(self, client, session_ttl: int = 10):
        """
        Initialize with an existing etcd3 client.

        Args:
            client: etcd3.Etcd3Client instance
            session_ttl: Lease TTL in seconds for ephemeral nodes
        """
        self.client = client
        self.session_ttl = session_ttl
        self._lease = None
        self._lease_lock = threading.Lock()
        self._session_lost = False
        self._stop = threading.Event()
        self._keepalive: Optional[threading.Thread] = None

    @classmethod
    def connect(
        cls,
        endpoints: Sequence[str],
        session_ttl: int = 10,
        timeout: Optional[float] = 5.0,
    ) -> "EtcdCoordinationClient":
        """
        Connect to the first reachable etcd endpoint.

        Args:
            endpoints: "host:port" strings, tried in order
            session_ttl: Lease TTL in seconds for ephemeral nodes
            timeout: Per-request timeout in seconds

        Raises:
            ConnectionLossError: If no endpoint answers a status probe
        """
        last_error = None
        for endpoint in endpoints:
            host, port = parse_endpoint(endpoint)
            client = etcd3.client(host=host, port=port, timeout=timeout)
            try:
                client.status()
            except etcd3.exceptions.Etcd3Exception as e:
                logger.warning(f"etcd endpoint {host}:{port} unreachable: {e}")
                last_error = e
                client.close()
                continue
            logger.info(f"Connected to etcd at {host}:{port}")
            return cls(client, session_ttl=session_ttl)

        raise ConnectionLossError(f"no etcd endpoint reachable ({', '.join(endpoints)}): {last_error}")

    # ------------------------------------------------------------------
    # Session lease
    # ------------------------------------------------------------------

    def _session_lease(self):
        """
        Current session lease, opening a new one if there is none or the last
        one expired. Ephemeral nodes of an expired lease are already gone, so
        queue entries created under it are reported as vanished by the lock.
        """
        with self._lease_lock:
            if self._session_lost:
                logger.warning(f"Replacing expired etcd session lease {self._lease.id}")
                self._lease = None
                self._session_lost = False
            if self._lease is None:
                self._lease = self.client.lease(self.session_ttl)
                self._keepalive = threading.Thread(
                    target=self._keepalive_loop,
                    args=(self._lease,),
                    name="etcd-session-keepalive",
                    daemon=True,
                )
                self._keepalive.start()
                logger.debug(f"Opened etcd session lease {self._lease.id} (ttl={self.session_ttl}s)")
            return self._lease

    def _expire_lease(self, lease) -> None:
        with self._lease_lock:
            if lease is self._lease and not self._session_lost:
                logger.error(f"etcd session lease {lease.id} expired; ephemeral nodes lost")
                self._session_lost = True

    def _keepalive_loop(self, lease):
        interval = max(self.session_ttl / 3.0, 0.5)
        while not self._stop.wait(interval):
            if lease is not self._lease:
                return
            try:
                responses = list(lease.refresh())
            except Exception as e:
                logger.warning(f"etcd session keepalive failed: {e}")
                continue
            if responses and responses[0].TTL <= 0:
                self._expire_lease(lease)
                return

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def create(self, path, data=b"", sequential=False, ephemeral=False) -> str:
        with _translate_errors(path):
            lease = self._session_lease() if ephemeral else None
        try:
            return self._create(path, data, sequential, lease)
        except ConnectionLossError as e:
            if lease is not None and _status_of(e.__cause__) == grpc.StatusCode.NOT_FOUND:
                # Lease expired before the keepalive thread noticed
                self._expire_lease(lease)
            raise

    def _create(self, path, data, sequential, lease) -> str:
        txn = self.client.transactions
        parent = parent_of(path)
        guards = [] if parent == "/" else [txn.version(parent) > 0]

        with _translate_errors(path):
            if not sequential:
                succeeded, _ = self.client.transaction(
                    compare=guards + [txn.create(path) == 0],
                    success=[txn.put(path, data, lease=lease)],
                    failure=[],
                )
                if succeeded:
                    return path
                if parent != "/" and not self.exists(parent):
                    raise NoNodeError(f"parent does not exist: {parent}", parent)
                raise NodeExistsError(f"node exists: {path}", path)

            counter_key = SEQUENCE_PREFIX + parent
            for delay in backoff_delays(base=0.002, max_delay=0.1, jitter=0.002,
                                        attempts=MAX_SEQUENCE_ATTEMPTS):
                value, meta = self.client.get(counter_key)
                if value is None:
                    sequence = 0
                    counter_guard = txn.create(counter_key) == 0
                else:
                    sequence = int(value)
                    counter_guard = txn.mod(counter_key) == meta.mod_revision

                node_path = format_sequence(path, sequence)
                succeeded, _ = self.client.transaction(
                    compare=guards + [counter_guard],
                    success=[
                        txn.put(counter_key, str(sequence + 1)),
                        txn.put(node_path, data, lease=lease),
                    ],
                    failure=[],
                )
                if succeeded:
                    return node_path
                if parent != "/" and not self.exists(parent):
                    raise NoNodeError(f"parent does not exist: {parent}", parent)
                time.sleep(delay)

        raise ConnectionLossError(f"could not allocate sequence under {parent}", path)

    def get(self, path: str) -> bytes:
        with _translate_errors(path):
            value, _ = self.client.get(path)
        if value is None:
            raise NoNodeError(f"no node: {path}", path)
        return value

    def children(self, path: str) -> List[str]:
        prefix = path.rstrip("/") + "/"
        with _translate_errors(path):
            if path != "/" and not self.exists(path):
                raise NoNodeError(f"no node: {path}", path)
            names = []
            for _, meta in self.client.get_prefix(prefix, keys_only=True):
                rest = meta.key.decode()[len(prefix):]
                if rest and "/" not in rest:
                    names.append(rest)
        return names

    def exists(self, path: str) -> bool:
        if path == "/":
            return True
        with _translate_errors(path):
            value, _ = self.client.get(path)
        return value is not None

    def delete(self, path: str) -> None:
        with _translate_errors(path):
            for _ in self.client.get_prefix(path.rstrip("/") + "/", keys_only=True, limit=1):
                raise NotEmptyError(f"node has children: {path}", path)
            if not self.client.delete(path):
                raise NoNodeError(f"no node: {path}", path)

    def wait_for_deletion(self, path: str, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        with _translate_errors(path):
            while True:
                value, meta = self.client.get(path)
                if value is None:
                    return True
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                # Watch from the revision after our read so a delete landing
                # between the read and the watch is still delivered.
                try:
                    event = self.client.watch_once(
                        path,
                        timeout=remaining,
                        start_revision=meta.response_header.revision + 1,
                    )
                except etcd3.exceptions.WatchTimedOut:
                    return False
                if isinstance(event, etcd3.events.DeleteEvent):
                    return True

    def close(self) -> None:
        self._stop.set()
        with self._lease_lock:
            lease, self._lease = self._lease, None
        if lease is not None:
            try:
                lease.revoke()
            except etcd3.exceptions.Etcd3Exception as e:
                # etcd drops the ephemeral nodes anyway once the TTL runs out
                logger.warning(f"Failed to revoke etcd session lease: {e}")
        self.client.close()
