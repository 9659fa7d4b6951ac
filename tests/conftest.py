"""
Pytest configuration for the Alpen-Webcams fetcher tests.

Provides a fake APScheduler, host objects, and a way to run fetch threads
inline so scheduler tests are deterministic.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from app.cameras import find_camera
from app.host import AssetStore, Host
from app.scheduler import FetchScheduler


class InlineThread:
    """threading.Thread stand-in that runs its target on start()."""

    def __init__(self, target=None, args=(), kwargs=None, name=None, daemon=None):
        self._target = target
        self._args = args
        self._kwargs = kwargs or {}
        self.name = name
        self.daemon = daemon

    def start(self):
        self._target(*self._args, **self._kwargs)


class Clock:
    """Settable clock for FetchScheduler."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def image_response(status_code=200, content=b"\xff\xd8jpegdata\xff\xd9"):
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content
    return resp


@pytest.fixture
def inline_threads():
    with patch("app.scheduler.threading.Thread", InlineThread):
        yield


@pytest.fixture
def camera():
    return find_camera("wallberg")


@pytest.fixture
def host():
    return Host(assets=AssetStore(max_age_seconds=3600, max_entries=12))


@pytest.fixture
def aps():
    """Fake APScheduler scheduler; add_job returns a job mock."""
    scheduler = MagicMock()
    scheduler.add_job.return_value = MagicMock(name="job")
    return scheduler


@pytest.fixture
def clock():
    return Clock(datetime(2024, 6, 15, 10, 22, 30))


@pytest.fixture
def fetcher(camera, host, aps, clock):
    return FetchScheduler(camera, host, aps, clock=clock)


@pytest.fixture
def make_response():
    return image_response
