"""
Queue Lock: FIFO mutual exclusion from ephemeral-sequential nodes.

Each contender creates `<path>/lock-NNNNNNNNNN` (ephemeral, sequential).
The lowest live sequence holds the lock. Everyone else waits for the
deletion of the entry just ahead of it, then re-lists. Because the sequence
is assigned by the coordination service, the queue order is the same for
contenders in every process. A holder that crashes loses its session, the
service deletes its entry, and the next contender is granted the lock.
"""

import logging
import time
from typing import Optional

from .client import (
    CoordinationClient,
    ConnectionLossError,
    NodeExistsError,
    NoNodeError,
    basename_of,
    join_path,
    parse_sequence,
)

logger = logging.getLogger(__name__)

LOCK_PREFIX = "lock-"


class LockAcquireTimeout(Exception):
    """Raised by the context-manager form when the wait budget runs out"""


class QueueLock:
    """
    Distributed mutual exclusion rooted at a coordination path.

    Usage:
        lock = QueueLock(client, "/app/locks/item-1", timeout=5.0)
        with lock:
            ...  # critical section

    Not reentrant, and one instance tracks a single queue entry: create one
    lock object per critical section.
    """

    def __init__(
        self,
        client: CoordinationClient,
        path: str,
        identifier: str = "",
        timeout: Optional[float] = None,
    ):
        """
        Args:
            client: Session used for the queue entry (its lifetime bounds the lock)
            path: Lock container node; created on first use
            identifier: Stored in the queue entry, for debugging contention
            timeout: Default wait budget for the context-manager form
        """
        self.client = client
        self.path = path
        self.identifier = identifier
        self.timeout = timeout
        self.node: Optional[str] = None
        self.is_acquired = False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Join the queue and block until this entry is at its head.

        Args:
            timeout: Seconds to wait, None for no limit

        Returns:
            True if acquired, False if the timeout elapsed (entry removed)

        Raises:
            ConnectionLossError: Service unreachable, or the entry vanished
                because the session expired
        """
        if self.is_acquired:
            raise RuntimeError(f"Lock {self.path} already held by this instance")

        deadline = None if timeout is None else time.monotonic() + timeout

        try:
            self.client.create(self.path)
        except NodeExistsError:
            pass

        self.node = self.client.create(
            join_path(self.path, LOCK_PREFIX),
            self.identifier.encode(),
            sequential=True,
            ephemeral=True,
        )
        name = basename_of(self.node)

        try:
            while True:
                queue = sorted(
                    (c for c in self.client.children(self.path) if c.startswith(LOCK_PREFIX)),
                    key=parse_sequence,
                )
                if name not in queue:
                    raise ConnectionLossError(f"lock entry {self.node} vanished", self.node)

                position = queue.index(name)
                if position == 0:
                    self.is_acquired = True
                    logger.debug(f"Acquired {self.path} as {name}")
                    return True

                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        logger.warning(f"Timed out waiting for {self.path} ({position} ahead)")
                        self._remove_entry()
                        return False

                predecessor = join_path(self.path, queue[position - 1])
                logger.debug(f"{name} waiting on {queue[position - 1]} ({position} ahead)")
                self.client.wait_for_deletion(predecessor, remaining)
        except BaseException:
            # Includes cancellation (KeyboardInterrupt etc.): never leave a
            # dead entry blocking the queue.
            self._remove_entry()
            raise

    def release(self) -> None:
        """Leave the queue. Safe to call when the entry is already gone."""
        self.is_acquired = False
        self._remove_entry()

    def _remove_entry(self) -> None:
        node, self.node = self.node, None
        if node is None:
            return
        try:
            self.client.delete(node)
        except NoNodeError:
            pass
        except ConnectionLossError as e:
            # The ephemeral entry goes away with the session
            logger.warning(f"Could not remove lock entry {node}: {e}")

    def __enter__(self):
        if not self.acquire(self.timeout):
            raise LockAcquireTimeout(f"Timed out acquiring {self.path}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
