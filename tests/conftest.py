import itertools
from datetime import datetime, timedelta

import pytest

from productivity_tracker.classifier import ClassificationEngine
from productivity_tracker.config import MonitorSettings
from productivity_tracker.events import EVENT_NAMES, EventBus
from productivity_tracker.monitor import ActivityMonitor
from productivity_tracker.rules import RuleCatalog


class FakeClock:
    """Manually advanced replacement for ``datetime.now``."""

    def __init__(self, start=datetime(2024, 1, 2, 10, 0, 0)):  # a Tuesday
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedWindowSource:
    def __init__(self, window=None):
        self.window = window
        self.error = None
        self.calls = 0

    def capture(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.window


class RecordingStore:
    def __init__(self):
        self.created = []
        self.updates = []
        self.fail_create = False
        self.fail_update = False
        self._ids = itertools.count(1)

    def create(self, session):
        if self.fail_create:
            raise RuntimeError("create failed")
        session.id = next(self._ids)
        self.created.append(session)
        return session

    def update(self, session_id, **fields):
        if self.fail_update:
            raise RuntimeError("update failed")
        self.updates.append((session_id, fields))


class FakeIdleDetector:
    def __init__(self, milliseconds=0):
        self.milliseconds = milliseconds

    def milliseconds_since_input(self):
        return self.milliseconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def window_source():
    return ScriptedWindowSource()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def received(bus):
    """Every event published on ``bus`` as ``(name, payload)`` tuples."""
    log = []
    for name in sorted(EVENT_NAMES):
        bus.subscribe(name, lambda payload, name=name: log.append((name, payload)))
    return log


@pytest.fixture
def engine(clock):
    return ClassificationEngine(RuleCatalog(), clock=clock)


@pytest.fixture
def make_monitor(store, engine, window_source, bus, clock):
    def factory(settings=None, **kwargs):
        return ActivityMonitor(
            store,
            kwargs.pop("engine", engine),
            window_source,
            settings or MonitorSettings(),
            events=bus,
            clock=clock,
            hostname="test-host",
            os_name="test-os",
            **kwargs,
        )

    return factory


@pytest.fixture
def monitor(make_monitor):
    return make_monitor()


@pytest.fixture
def idle_detector():
    return FakeIdleDetector()
