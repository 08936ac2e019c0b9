"""Pytest configuration and fixtures."""

from datetime import UTC, datetime, timedelta

import pytest

from polymarket_fresh_cluster.config import clear_settings_cache


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at a fixed instant."""
    return FakeClock(datetime(2024, 11, 5, 12, 0, tzinfo=UTC))


@pytest.fixture
def sample_outcome_id() -> str:
    """Sample outcome (CLOB token) id for testing."""
    return "71321045679252212594626385532706912750332728571942532289631379312455583992563"


@pytest.fixture
def sample_wallet() -> str:
    """Sample checksummed wallet address."""
    return "0x1234567890123456789012345678901234567890"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()
