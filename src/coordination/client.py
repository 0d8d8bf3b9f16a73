"""
Coordination Client: contract for a hierarchical, linearizable namespace.

Every backend (etcd, in-process) exposes the same small surface:
- create / get / children / exists / delete on slash-separated paths
- sequential creation (service-assigned, strictly increasing suffix)
- ephemeral creation (node removed when the creating session ends)
- wait_for_deletion, the watch primitive the queue lock is built on
"""

import posixpath
import re
from abc import ABC, abstractmethod
from typing import List, Optional

# Width of the zero-padded suffix appended to sequential nodes
SEQUENCE_WIDTH = 10

_SEQUENCE_RE = re.compile(r"(\d{%d})$" % SEQUENCE_WIDTH)


class CoordinationError(Exception):
    """Base class for coordination service failures"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class NodeExistsError(CoordinationError):
    """Node already exists at the requested path"""


class NoNodeError(CoordinationError):
    """Node (or its parent, on create) does not exist"""


class NotEmptyError(CoordinationError):
    """Node still has children and cannot be deleted"""


class ConnectionLossError(CoordinationError):
    """Service unreachable, or the client's session is gone"""


def format_sequence(prefix: str, sequence: int) -> str:
    """Build the name of a sequential node from its prefix and number."""
    return f"{prefix}{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(name: str) -> int:
    """
    Extract the service-assigned sequence number from a node name.

    Accepts a bare child name or a full path.

    Raises:
        ValueError: If the name carries no sequence suffix
    """
    match = _SEQUENCE_RE.search(name)
    if not match:
        raise ValueError(f"Node name has no sequence suffix: {name}")
    return int(match.group(1))


def join_path(*parts: str) -> str:
    return posixpath.join(*parts)


def parent_of(path: str) -> str:
    parent = posixpath.dirname(path.rstrip("/"))
    return parent or "/"


def basename_of(path: str) -> str:
    return posixpath.basename(path.rstrip("/"))


class CoordinationClient(ABC):
    """
    A session with the coordination service.

    Ephemeral nodes belong to the session of the client that created them and
    disappear when that session is closed or expires.
    """

    @abstractmethod
    def create(
        self,
        path: str,
        data: bytes = b"",
        sequential: bool = False,
        ephemeral: bool = False,
    ) -> str:
        """
        Create a node.

        Args:
            path: Node path; for sequential nodes, the name prefix
            data: Node payload
            sequential: Append a strictly increasing suffix to the name
            ephemeral: Tie the node to this client's session

        Returns:
            The path actually created (differs from `path` when sequential)

        Raises:
            NodeExistsError: Path already taken (non-sequential only)
            NoNodeError: Parent node is missing
            ConnectionLossError: Service unreachable
        """

    @abstractmethod
    def get(self, path: str) -> bytes:
        """Return node data. Raises NoNodeError if absent."""

    @abstractmethod
    def children(self, path: str) -> List[str]:
        """Return the names (not paths) of a node's direct children, unordered."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete a childless node. Raises NoNodeError or NotEmptyError."""

    @abstractmethod
    def wait_for_deletion(self, path: str, timeout: Optional[float] = None) -> bool:
        """
        Block until the node at `path` no longer exists.

        Args:
            path: Node to watch
            timeout: Seconds to wait, None for no limit

        Returns:
            True once the node is gone, False if the timeout elapsed first
        """

    @abstractmethod
    def close(self) -> None:
        """End the session; the service drops this session's ephemeral nodes."""

    def ensure_path(self, path: str) -> None:
        """
        Create `path` and any missing ancestors.

        Losing a creation race to another client counts as success.
        """
        if path in ("", "/"):
            return
        current = ""
        for part in path.strip("/").split("/"):
            current = f"{current}/{part}"
            if self.exists(current):
                continue
            try:
                self.create(current)
            except NodeExistsError:
                pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
