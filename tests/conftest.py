"""Pytest fixtures.

The central database in these tests is a SQLite file reached through
aiosqlite. Its folder does not exist until a test calls
``server.start()``, so until then every connection attempt fails the same
way an unreachable PostgreSQL host would.
"""

import datetime
import pathlib

import pytest

from labcheckin import config
from labcheckin.model import cache, service


TEST_FOLDER = pathlib.Path(__file__).parent
DATA_FOLDER = TEST_FOLDER / "data"
NOW = datetime.datetime(2025, 3, 14, 9, 30, 15)


class FakeClock:
    """Monotonic clock that only moves when a test advances it."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeServer:
    """A central database that can be switched on."""

    def __init__(self, folder: pathlib.Path) -> None:
        self.folder = folder
        self.db_path = folder / "central.db"

    @property
    def url(self) -> str:
        return f"sqlite+aiosqlite:///{self.db_path}"

    def start(self) -> None:
        self.folder.mkdir(parents=True, exist_ok=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def now() -> datetime.datetime:
    """Fixed local wall-clock time for new records."""
    return NOW


@pytest.fixture
def data_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """Empty folder for the cache files."""
    return tmp_path / "data"


@pytest.fixture
def cache_store(data_dir: pathlib.Path) -> cache.CacheStore:
    return cache.CacheStore(data_dir)


@pytest.fixture
def server(tmp_path: pathlib.Path) -> FakeServer:
    """Central database that is unreachable until started."""
    return FakeServer(tmp_path / "server")


@pytest.fixture
def online_server(server: FakeServer) -> FakeServer:
    """Central database that is reachable from the start."""
    server.start()
    return server


@pytest.fixture
def settings(data_dir: pathlib.Path, server: FakeServer) -> config.Settings:
    """Settings pointing at the test server and cache folder."""
    return config.Settings(
        data_dir=data_dir,
        store_urls=[server.url],
        connect_timeout=5.0,
        reconnect_timeout=5.0,
        probe_debounce=10.0,
        refresh_interval=60.0,
        health_interval=60.0,
    )


@pytest.fixture
def checkin(
    settings: config.Settings, clock: FakeClock, now: datetime.datetime
) -> service.CheckinService:
    """Service under test. Tests close it with ``async with``."""
    return service.CheckinService(settings, clock=clock, now=lambda: now)
