"""
Pytest configuration and shared fixtures for the statistics engine tests.

No test touches the network: the sync client runs on httpx.MockTransport
backed by FakeStatsServer.
"""
import os

import pytest

from arenastats.config import Settings
from arenastats.domain.utils.storage import ACCESS_KEY_KEY, MemoryStore
from arenastats.logging_config import setup_logging
from tests.fakes import ACCESS_KEY, BASE_URL, STATUS_URL, FakeStatsServer, RecordingSleep


def pytest_configure(config):
    """Configure pytest settings."""
    # Set up logging based on LOG_LEVEL env var
    log_level = os.environ.get("LOG_LEVEL", "WARNING")
    setup_logging(log_level, collect_logs=False)


@pytest.fixture
def settings() -> Settings:
    """Settings tuned for fast, deterministic tests."""
    return Settings(
        stats_base_url=BASE_URL,
        status_url=STATUS_URL,
        request_timeout=1.0,
        push_attempts=3,
        push_backoff=0.75,
        poll_delay=0.01,
        restart_grace=0.01,
        sync_settle_delay=0,
        points_per_damage=1.0,
        points_per_frag=50,
        points_per_team_win=150,
    )


@pytest.fixture
def storage() -> MemoryStore:
    """Key-value store that already holds an access key."""
    return MemoryStore({ACCESS_KEY_KEY: ACCESS_KEY})


@pytest.fixture
def server() -> FakeStatsServer:
    return FakeStatsServer()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
