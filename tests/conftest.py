"""
Pytest configuration and fixtures for EchoMesh tests.

Provides common fixtures and test utilities for unit and integration tests.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from echomesh.crypto import CryptoProvider, KdfParams, initialize
from echomesh.session import RoomSession, SessionSettings
from echomesh.transport import LoopbackHub

# Cheap Argon2 costs for tests that exercise session flow rather than the KDF
FAST_KDF = KdfParams(time_cost=1, memory_cost=8192, parallelism=1)


class FakeClock:
    """Manually advanced clock usable as both wall and monotonic time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path
    """
    tmp = Path(tempfile.mkdtemp(prefix="echomesh_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def provider() -> CryptoProvider:
    """Provider with the production Argon2 parameters."""
    return initialize()


@pytest.fixture
def fast_provider() -> CryptoProvider:
    """Provider with light Argon2 parameters."""
    return initialize(FAST_KDF)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hub() -> LoopbackHub:
    return LoopbackHub()


@pytest.fixture
def make_session(fast_provider, hub, clock):
    """Factory for sessions sharing one hub, provider and clock."""

    def factory(password_provider=None, **settings) -> RoomSession:
        return RoomSession(
            fast_provider,
            hub,
            password_provider=password_provider,
            settings=SessionSettings(**settings),
            clock=clock,
            monotonic=clock,
        )

    return factory


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
