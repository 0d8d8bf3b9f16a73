"""
Local Coordination Service: in-process namespace with the same contract as etcd.

Used for single-process deployments and for exercising the lock and ledger
against several independent sessions (one per simulated front-end) in tests.
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from .client import (
    CoordinationClient,
    ConnectionLossError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    basename_of,
    format_sequence,
    parent_of,
)

logger = logging.getLogger(__name__)


@dataclass
class _Node:
    data: bytes
    owner: Optional[int]  # Session id for ephemeral nodes
    next_sequence: int = 0  # Suffix handed to the next sequential child


class LocalCoordinationService:
    """
    Thread-safe hierarchical namespace shared by every session created from it.

    All operations run under a single condition variable, which makes them
    linearizable and lets deletion waiters block without polling.
    """

    def __init__(self):
        self._nodes: Dict[str, _Node] = {"/": _Node(data=b"", owner=None)}
        self._cond = threading.Condition()
        self._session_ids = itertools.count(1)
        self._live_sessions = set()
        self.available = True

    def session(self) -> "LocalCoordinationClient":
        """Open a new session (one per front-end process)."""
        with self._cond:
            session_id = next(self._session_ids)
            self._live_sessions.add(session_id)
        return LocalCoordinationClient(self, session_id)

    def set_available(self, available: bool) -> None:
        """Simulate the service becoming (un)reachable for every session."""
        with self._cond:
            self.available = available
            self._cond.notify_all()

    def expire_session(self, session_id: int) -> List[str]:
        """
        Drop a session and every ephemeral node it owns.

        Returns:
            Paths of the removed nodes
        """
        with self._cond:
            self._live_sessions.discard(session_id)
            removed = [p for p, n in self._nodes.items() if n.owner == session_id]
            for path in removed:
                del self._nodes[path]
            if removed:
                self._cond.notify_all()
        if removed:
            logger.debug(f"Session {session_id} expired, removed {len(removed)} ephemeral nodes")
        return removed

    # Operations below are called by LocalCoordinationClient with its session id

    def _check(self, session_id: int) -> None:
        if not self.available:
            raise ConnectionLossError("coordination service unavailable")
        if session_id not in self._live_sessions:
            raise ConnectionLossError(f"session {session_id} expired")

    def _create(self, session_id, path, data, sequential, ephemeral) -> str:
        with self._cond:
            self._check(session_id)
            parent = parent_of(path)
            parent_node = self._nodes.get(parent)
            if parent_node is None:
                raise NoNodeError(f"parent does not exist: {parent}", parent)
            if sequential:
                path = format_sequence(path, parent_node.next_sequence)
                parent_node.next_sequence += 1
            elif path in self._nodes:
                raise NodeExistsError(f"node exists: {path}", path)
            self._nodes[path] = _Node(data=bytes(data), owner=session_id if ephemeral else None)
            return path

    def _get(self, session_id, path) -> bytes:
        with self._cond:
            self._check(session_id)
            node = self._nodes.get(path)
            if node is None:
                raise NoNodeError(f"no node: {path}", path)
            return node.data

    def _children(self, session_id, path) -> List[str]:
        with self._cond:
            self._check(session_id)
            if path not in self._nodes:
                raise NoNodeError(f"no node: {path}", path)
            return [basename_of(p) for p in self._nodes if p != "/" and parent_of(p) == path]

    def _exists(self, session_id, path) -> bool:
        with self._cond:
            self._check(session_id)
            return path in self._nodes

    def _delete(self, session_id, path) -> None:
        with self._cond:
            self._check(session_id)
            if path not in self._nodes:
                raise NoNodeError(f"no node: {path}", path)
            if any(p != "/" and parent_of(p) == path for p in self._nodes):
                raise NotEmptyError(f"node has children: {path}", path)
            del self._nodes[path]
            self._cond.notify_all()

    def _wait_for_deletion(self, session_id, path, timeout) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                self._check(session_id)
                if path not in self._nodes:
                    return True
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)


class LocalCoordinationClient(CoordinationClient):
    """Session handle onto a LocalCoordinationService."""

    def __init__(self, service: LocalCoordinationService, session_id: int):
        self.service = service
        self.session_id = session_id
        self.closed = False

    def create(self, path, data=b"", sequential=False, ephemeral=False) -> str:
        return self.service._create(self.session_id, path, data, sequential, ephemeral)

    def get(self, path: str) -> bytes:
        return self.service._get(self.session_id, path)

    def children(self, path: str) -> List[str]:
        return self.service._children(self.session_id, path)

    def exists(self, path: str) -> bool:
        return self.service._exists(self.session_id, path)

    def delete(self, path: str) -> None:
        self.service._delete(self.session_id, path)

    def wait_for_deletion(self, path: str, timeout: Optional[float] = None) -> bool:
        return self.service._wait_for_deletion(self.session_id, path, timeout)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.service.expire_session(self.session_id)
