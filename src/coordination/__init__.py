"""
Coordination module: hierarchical namespace, sessions and queue locks.

The etcd backend lives in coordination.etcd_client and is imported only
where it is selected, so the rest of the package works without etcd.
"""

from .client import (
    CoordinationClient,
    CoordinationError,
    ConnectionLossError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    parse_sequence,
)
from .local import LocalCoordinationService, LocalCoordinationClient
from .lock import QueueLock, LockAcquireTimeout
from .namespace import NamespaceLayout, DEFAULT_ROOT

__all__ = [
    "CoordinationClient",
    "CoordinationError",
    "ConnectionLossError",
    "NodeExistsError",
    "NoNodeError",
    "NotEmptyError",
    "parse_sequence",
    "LocalCoordinationService",
    "LocalCoordinationClient",
    "QueueLock",
    "LockAcquireTimeout",
    "NamespaceLayout",
    "DEFAULT_ROOT",
]
