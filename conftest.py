"""
Pytest configuration shared by the test suite.

Adds --etcd for running coordination integration tests against a live etcd
(skipped otherwise), and fixtures for a controllable clock and an in-process
coordination service.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))


def pytest_addoption(parser):
    """Add custom command line options"""
    parser.addoption(
        "--etcd",
        action="store",
        default=None,
        metavar="HOST:PORT",
        help="Run etcd integration tests against this endpoint",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--etcd"):
        return
    skip = pytest.mark.skip(reason="needs --etcd HOST:PORT")
    for item in items:
        if "etcd" in item.keywords:
            item.add_marker(skip)


class ManualClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return ManualClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def coordination_service():
    from coordination.local import LocalCoordinationService

    return LocalCoordinationService()


@pytest.fixture(scope="session")
def etcd_endpoint(request):
    return request.config.getoption("--etcd")
