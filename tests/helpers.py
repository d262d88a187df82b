"""Shared fakes for the test suite."""

import itertools
from datetime import datetime, timedelta, timezone
from pathlib import Path

from mtt.core.config import Settings
from mtt.core.gateway import PersistenceGateway
from mtt.core.store import AtomicFileStore


class FakeClock:
    """A settable UTC clock. Call it to read the time, advance it by hand."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 2, 12, 14, 30, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, ms=0, seconds=0):
        self.now += timedelta(milliseconds=ms, seconds=seconds)


def sequential_ids(prefix="timer"):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


def make_gateway(tmpdir, clock=None, **settings):
    tmpdir = Path(tmpdir)
    settings = Settings(**{"lock_timeout_seconds": 1.0, **settings})
    store = AtomicFileStore(tmpdir / "current", lock_timeout=settings.lock_timeout_seconds)
    gateway = PersistenceGateway(store, settings, snapshot_dir=tmpdir / "snapshots", clock=clock or FakeClock())
    gateway.initialize()
    return gateway
