"""
Pytest configuration for Outreach Sync tests.
"""

import pytest

from outreach_sync.core.config import Settings

from .fakes import FakeClock, FakeJobScheduler, make_store


@pytest.fixture
def settings():
    return Settings(
        peak_gating_enabled=True,
        peak_timezone="UTC",
        status_history_limit=5,
        shutdown_timeout_seconds=1,
    )


@pytest.fixture
def store():
    return make_store()


@pytest.fixture
def jobs():
    return FakeJobScheduler()


@pytest.fixture
def clock():
    return FakeClock()
