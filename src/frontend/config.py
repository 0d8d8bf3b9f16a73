"""
Front-end configuration.

Settings come from environment variables (`ServerConfig.from_env`) and can be
overridden on the command line (see frontend.main).
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from coordination.namespace import DEFAULT_ROOT


class Backend(Enum):
    """Storage backend selected at startup"""

    MEMORY = "memory"  # Single process, nothing shared
    ETCD = "etcd"  # Coordinated through an etcd cluster


def _flag(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def split_endpoints(value: str) -> List[str]:
    return [e.strip() for e in value.split(",") if e.strip()]


@dataclass
class ServerConfig:
    """
    Attributes:
        host: HTTP bind address
        port: HTTP port
        backend: Storage backend
        etcd_endpoints: "host:port" list, tried in order
        root: Namespace root on the coordination service
        lock_timeout: Default place_bid budget in seconds (None waits forever)
        session_ttl: Coordination session lease TTL in seconds
        log_level: Logging level name
        trace_console: Export trace spans to stdout
        instance_id: Tag for this front-end in lock queue entries
    """

    host: str = "0.0.0.0"
    port: int = 8080
    backend: Backend = Backend.MEMORY
    etcd_endpoints: List[str] = field(default_factory=lambda: ["localhost:2379"])
    root: str = DEFAULT_ROOT
    lock_timeout: Optional[float] = 10.0
    session_ttl: int = 10
    log_level: str = "INFO"
    trace_console: bool = False
    instance_id: str = ""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create config from environment variables"""
        lock_timeout = float(os.getenv("AUCTION_LOCK_TIMEOUT", "10.0"))
        return cls(
            host=os.getenv("AUCTION_HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            backend=Backend(os.getenv("AUCTION_BACKEND", "memory").lower()),
            etcd_endpoints=split_endpoints(os.getenv("AUCTION_ETCD_ENDPOINTS", "localhost:2379")),
            root=os.getenv("AUCTION_ROOT", DEFAULT_ROOT),
            lock_timeout=lock_timeout if lock_timeout > 0 else None,
            session_ttl=int(os.getenv("AUCTION_SESSION_TTL", "10")),
            log_level=os.getenv("AUCTION_LOG_LEVEL", "INFO").upper(),
            trace_console=_flag(os.getenv("AUCTION_TRACE_CONSOLE", "")),
            instance_id=os.getenv("AUCTION_INSTANCE_ID", ""),
        )

    def resolved_instance_id(self) -> str:
        if self.instance_id:
            return self.instance_id
        import socket

        return f"{socket.gethostname()}:{self.port}"
