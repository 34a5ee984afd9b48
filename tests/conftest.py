# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import json
from typing import Dict, List, Optional

import pytest

from edge_core.config.settings import OfflineSettings, with_overrides
from edge_core.errors import NetworkError
from edge_core.offline.local_database import LocalDatabase
from edge_core.offline.models import HttpRequest, HttpResponse
from edge_core.offline.notifications import Notifier


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeClock:
    """Controllable time source (POSIX seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote:
    """
    In-memory remote store.

    Every call is recorded in ``calls``. While ``online`` is False each
    fetch raises NetworkError. ``responses`` maps a URL to the response
    (or exception) to return; anything else gets a 200 JSON echo.
    """

    def __init__(self):
        self.online = True
        self.calls: List[HttpRequest] = []
        self.responses: Dict[str, object] = {}

    def fetch(self, request: HttpRequest) -> HttpResponse:
        self.calls.append(request)
        if not self.online:
            raise NetworkError("Network unreachable", url=request.url, method=request.method)

        result = self.responses.get(request.url)
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        return HttpResponse.json_response({"url": request.url, "method": request.method})

    def urls(self, method: Optional[str] = None) -> List[str]:
        return [c.url for c in self.calls if method is None or c.method == method]

    def close(self) -> None:
        pass


def run_inline(func):
    """Scheduler/executor that runs work immediately on the calling thread."""
    func()


def json_body(data) -> bytes:
    return json.dumps(data).encode("utf-8")


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Fake clock starting at a fixed instant"""
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    """Initialized SQLite store in a temporary directory"""
    db = LocalDatabase(tmp_path / "edge_offline.db", clock=clock)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def remote():
    """Fake remote store, online by default"""
    return FakeRemote()


@pytest.fixture
def notifier(clock):
    """Notifier whose history doubles as an event recorder"""
    return Notifier(clock=clock)


@pytest.fixture
def settings(tmp_path):
    """Default settings pointed at a temporary database"""
    return with_overrides(OfflineSettings(), db_path=tmp_path / "edge_offline.db")


@pytest.fixture
def engine(settings, store, remote, notifier, clock):
    """Started engine with synchronous background work and no timers"""
    from edge_core.offline.offline_engine import OfflineEngine

    eng = OfflineEngine(
        settings,
        store=store,
        remote=remote,
        notifier=notifier,
        probe=lambda: remote.online,
        scheduler=run_inline,
        executor=run_inline,
        clock=clock,
    )
    eng.start(background=False)
    yield eng
    eng.shutdown()


@pytest.fixture
def inline():
    """Synchronous scheduler for SyncEngine / CacheManager"""
    return run_inline
