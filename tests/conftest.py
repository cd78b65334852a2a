"""Shared pytest fixtures for overlap tracker tests.

Fixture summary
---------------
audience_source  FakeAudienceSource with scripted per-channel results.
channel_source   FakeChannelSource returning a configurable top-channel list.
overlap_sink     RecordingSink capturing every durable write in memory.
state_store      IterationStateStore backed by a file in ``tmp_path``.

Everything here runs without a database or network.  Repository tests build
their own aiosqlite engine; upstream tests mock httpx with respx.
"""

from __future__ import annotations

import os

import pytest

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set required env vars before any application modules are imported so that
# Settings() does not raise a ValidationError during collection.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "TWITCH_CLIENT_ID": "test-client-id",
    "TWITCH_CLIENT_SECRET": "test-client-secret",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

# ---------------------------------------------------------------------------
# Application imports (after env bootstrap)
# ---------------------------------------------------------------------------

from overlap_tracker.config.settings import get_settings  # noqa: E402
from overlap_tracker.tracker.state import IterationStateStore  # noqa: E402
from tests.fakes import FakeAudienceSource, FakeChannelSource, RecordingSink  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def audience_source() -> FakeAudienceSource:
    return FakeAudienceSource()


@pytest.fixture
def channel_source() -> FakeChannelSource:
    return FakeChannelSource(["alpha", "bravo", "charlie"])


@pytest.fixture
def overlap_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def state_store(tmp_path) -> IterationStateStore:
    return IterationStateStore(tmp_path / "state" / "iteration_state.json")
