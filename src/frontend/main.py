"""
Front-end entry point.

Examples:
    # Standalone, in-memory storage
    auction-frontend --port 8080

    # One of several front-ends sharing an etcd cluster
    auction-frontend --use-coordination --etcd etcd1:2379,etcd2:2379 --port 8081
"""

import argparse
import logging
import sys
from typing import List, Optional

from auction.coordinated import CoordinatedStore
from auction.memory import MemoryStore
from auction.retry import retry_unavailable
from auction.store import AuctionStore
from coordination.namespace import NamespaceLayout
from observability.tracing import setup_tracing, shutdown_tracing

from .api import create_app
from .config import Backend, ServerConfig, split_endpoints

logger = logging.getLogger(__name__)


def build_store(config: ServerConfig) -> AuctionStore:
    """
    Construct the storage backend named by the config.

    For etcd, connecting and preparing the namespace are retried with
    backoff so front-ends can start before the cluster is ready.
    """
    if config.backend is Backend.MEMORY:
        logger.info("Using in-memory storage (single process)")
        return MemoryStore()

    from coordination.etcd_client import EtcdCoordinationClient

    def connect() -> CoordinatedStore:
        client = EtcdCoordinationClient.connect(
            config.etcd_endpoints, session_ttl=config.session_ttl
        )
        try:
            return CoordinatedStore(
                client,
                NamespaceLayout(config.root),
                lock_timeout=config.lock_timeout,
                identifier=config.resolved_instance_id(),
            )
        except Exception:
            client.close()
            raise

    store = retry_unavailable(connect, attempts=5, base=0.5, description="connect to etcd")
    logger.info(f"Using etcd storage at {', '.join(config.etcd_endpoints)} under {config.root}")
    return store


def parse_args(argv: Optional[List[str]] = None) -> ServerConfig:
    """Apply command-line overrides on top of the environment config."""
    config = ServerConfig.from_env()

    parser = argparse.ArgumentParser(description="Distributed auction front-end")
    parser.add_argument("--host", default=config.host, help="HTTP bind address")
    parser.add_argument("--port", type=int, default=config.port, help="HTTP port (env PORT)")
    parser.add_argument(
        "--backend",
        choices=[b.value for b in Backend],
        default=config.backend.value,
        help="Storage backend",
    )
    parser.add_argument(
        "--use-coordination",
        action="store_true",
        help="Shorthand for --backend etcd",
    )
    parser.add_argument(
        "--etcd",
        default=",".join(config.etcd_endpoints),
        help="etcd endpoints, comma separated (default: %(default)s)",
    )
    parser.add_argument("--root", default=config.root, help="Namespace root path")
    parser.add_argument(
        "--lock-timeout",
        type=float,
        default=config.lock_timeout or 0.0,
        help="Seconds a bid may wait for its auction's lock (0 = no limit)",
    )
    parser.add_argument("--session-ttl", type=int, default=config.session_ttl)
    parser.add_argument("--log-level", default=config.log_level)
    parser.add_argument("--trace-console", action="store_true", default=config.trace_console)
    parser.add_argument("--instance-id", default=config.instance_id)

    args = parser.parse_args(argv)

    config.host = args.host
    config.port = args.port
    config.backend = Backend.ETCD if args.use_coordination else Backend(args.backend)
    config.etcd_endpoints = split_endpoints(args.etcd)
    config.root = args.root
    config.lock_timeout = args.lock_timeout if args.lock_timeout > 0 else None
    config.session_ttl = args.session_ttl
    config.log_level = args.log_level.upper()
    config.trace_console = args.trace_console
    config.instance_id = args.instance_id
    return config


def main(argv: Optional[List[str]] = None) -> int:
    config = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    setup_tracing(f"auction-frontend-{config.resolved_instance_id()}", console_export=config.trace_console)

    try:
        store = build_store(config)
    except Exception as e:
        logger.error(f"Failed to initialize storage: {e}")
        return 1

    import uvicorn

    logger.info(f"Starting auction front-end on {config.host}:{config.port} ({config.backend.value})")
    try:
        uvicorn.run(create_app(store), host=config.host, port=config.port)
    finally:
        store.close()
        shutdown_tracing()
    return 0


if __name__ == "__main__":
    sys.exit(main())
