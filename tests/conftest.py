from datetime import datetime, timedelta, timezone

import pytest

from themis.storage import CheckRunStore


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path, clock):
    store = CheckRunStore(str(tmp_path / "themis.sqlite3"), clock=clock)
    store.initialize()
    return store
