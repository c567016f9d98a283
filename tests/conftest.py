"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from up_ynab_sync.config import CategorizationSettings, SyncSettings
from up_ynab_sync.state_store import StateStore

from fixtures import FakeDestination, FakeSource, make_mapping


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def sync_settings() -> SyncSettings:
    """Default sync settings without retry delay."""
    return SyncSettings(retry_delay=0.0)


@pytest.fixture
def categorization_off() -> CategorizationSettings:
    return CategorizationSettings(enabled=False)


@pytest.fixture
def categorization_on() -> CategorizationSettings:
    return CategorizationSettings(enabled=True, min_confidence_threshold=0.7)


@pytest.fixture
def mapping():
    """Spending account mapping (up-spending → ynab-spending)."""
    return make_mapping()


@pytest.fixture
def destination() -> FakeDestination:
    return FakeDestination()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def sleeps() -> list[float]:
    """Records retry waits instead of sleeping."""
    return []
