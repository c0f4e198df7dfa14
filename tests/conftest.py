"""
Pytest configuration and fixtures for testing.

Provides an in-memory change feed, a subscription manager wired to it, and
helpers for reading Prometheus counters.
"""

from pathlib import Path

import pytest
from prometheus_client import REGISTRY

from placement_realtime.realtime.manager import ChangeFeedSubscriptionManager
from placement_realtime.realtime.memory import InMemoryChangeFeed


def pytest_configure(config):
    """
    Load .env.test before any application module reads settings.
    """
    from dotenv import load_dotenv

    test_env_path = Path(__file__).parent.parent / ".env.test"
    if test_env_path.exists():
        load_dotenv(test_env_path, override=True)


# =============================================================================
# Change Feed Fixtures
# =============================================================================


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    """Create an empty in-memory change feed."""
    return InMemoryChangeFeed()


@pytest.fixture
def manager(feed) -> ChangeFeedSubscriptionManager:
    """Create a subscription manager over the in-memory feed."""
    manager = ChangeFeedSubscriptionManager(feed)
    yield manager
    manager.close()


class Recorder:
    """Callback that records every event it receives."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def count(self) -> int:
        return len(self.events)


@pytest.fixture
def recorder() -> Recorder:
    """Create a recording callback."""
    return Recorder()


@pytest.fixture
def make_recorder():
    """Factory for additional recording callbacks."""
    return Recorder


def sample_value(name: str, **labels) -> float:
    """Read a Prometheus sample, treating a missing series as zero."""
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def metric_value():
    """Return the Prometheus sample reader."""
    return sample_value
