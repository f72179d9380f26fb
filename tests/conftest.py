"""Shared test fixtures for readiness engine tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("APPLE_HEALTH_EXPORT_PATH", "")
    monkeypatch.setenv("USE_MOCK_DATA", "false")

# Allow running tests without `pip install -e .` by making `src/` importable,
# and the shared builders in `tests/helpers.py`.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
for _path in (_PROJECT_ROOT / "src", _PROJECT_ROOT / "tests"):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))

from helpers import FakeClock, FakeSignalStore, steady_history  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_store() -> FakeSignalStore:
    return FakeSignalStore(steady_history())


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def signal_db():
    """Create an in-memory SignalDatabase for testing."""
    from readiness.core.storage.database import SignalDatabase

    db = SignalDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from readiness.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def signal_repository(signal_db, field_encryptor):
    """Create a SignalRepository backed by in-memory SQLite."""
    from readiness.core.storage.repository import SignalRepository

    return SignalRepository(signal_db, field_encryptor, user_id="tester")


# ---------------------------------------------------------------------------
# Cache fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def durable_cache(signal_db, field_encryptor):
    from readiness.core.cache.durable import DurableCache

    return DurableCache(signal_db, field_encryptor)


@pytest.fixture
def tiered_cache(durable_cache, clock):
    from readiness.core.cache.memory import MemoryCache
    from readiness.core.cache.tiered import TieredCache

    return TieredCache(MemoryCache(), durable_cache, clock=clock)
