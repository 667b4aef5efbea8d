from datetime import UTC, datetime
from pathlib import Path

import pytest

from quietstats.adapters.clock import FixedClock
from quietstats.adapters.memory_store import InMemoryKeyValueStore
from quietstats.app_shell.context import ServiceContext
from quietstats.rules.loader import load_rules
from quietstats.rules.models import Rules

PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture
def rules() -> Rules:
    """Rules loaded from the real rules.yaml at the project root."""
    return load_rules(PROJECT_ROOT / "rules.yaml")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def test_ctx(rules: Rules, store: InMemoryKeyValueStore, clock: FixedClock) -> ServiceContext:
    """
    Creates a full ServiceContext backed by the in-memory store and a pinned clock.
    """
    return ServiceContext.create(rules, store=store, clock=clock)
