"""
Pytest configuration and fixtures for cache subsystem tests.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from unittest.mock import patch

import pytest

from warmcache.cache.kv_cache import SqliteMedium
from warmcache.cache.memory import MemoryMedium
from warmcache.cache.store import TieredStore
from warmcache.config import Settings, clear_settings_cache
from warmcache.exceptions import NetworkError
from warmcache.types import Request, Response


class FakeNetwork:
    """Fetcher double: records requests, can go offline or return an error status."""

    def __init__(self) -> None:
        self.calls: list[Request] = []
        self.offline = False
        self.status = 200

    async def __call__(self, request: Request) -> Response:
        self.calls.append(request)
        if self.offline:
            raise NetworkError("offline", context={"url": request.url})
        return Response(
            url=request.url,
            status=self.status,
            headers={"Content-Type": "text/plain"},
            body=f"{request.url}#{len(self.calls)}".encode(),
        )


class ManualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing.

    Points the durable database at temp_dir and disables warming delays.
    """
    env_vars = {
        "CACHE_PREFIX": "test-",
        "CACHE_DB_PATH": str(temp_dir / "cache" / "warmcache.db"),
        "APP_NAME": "testapp",
        "CACHE_VERSION_TAG": "v2",
        "APP_ORIGIN": "https://app.example.com",
        "WARMING_MAX_CONCURRENT": "2",
        "WARMING_TASK_DELAY_MS": "0",
        "IDLE_POLL_MS": "1",
        "IDLE_POLL_MAX_MS": "5",
        "CLEANUP_INITIAL_DELAY_S": "60",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        # Clear any cached settings
        clear_settings_cache()
        yield env_vars
        clear_settings_cache()


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    from warmcache.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings


@pytest.fixture
async def durable_medium(temp_dir: Path) -> AsyncGenerator[SqliteMedium, None]:
    """Create an opened SQLite medium."""
    medium = SqliteMedium(temp_dir / "durable.db")
    await medium.open()
    yield medium
    await medium.close()


@pytest.fixture
def session_medium() -> MemoryMedium:
    return MemoryMedium()


@pytest.fixture
def store(
    durable_medium: SqliteMedium, session_medium: MemoryMedium, clock: ManualClock
) -> TieredStore:
    """TieredStore over a real SQLite file and an in-memory session medium."""
    return TieredStore(durable_medium, session_medium, prefix="test-", clock=clock)
