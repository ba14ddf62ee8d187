from datetime import datetime

import pytest

from productivity_tracker.db import SqliteSessionStore, database_connection, row_to_session
from productivity_tracker.models import ActivitySession


@pytest.fixture
def session_store(tmp_path):
    store = SqliteSessionStore(tmp_path / "sessions.sqlite3")
    yield store
    store.close()


def make_session(**overrides):
    values = dict(
        start_time=datetime(2024, 1, 2, 10, 0, 0),
        application_name="Code",
        window_title="main.py",
        category="Development",
        productivity_score=0.95,
        hostname="host",
        os_name="linux",
    )
    values.update(overrides)
    return ActivitySession(**values)


def test_create_assigns_id_and_timestamps(session_store):
    original = make_session()

    stored = session_store.create(original)

    assert stored.id is not None
    assert stored.created_at is not None
    assert original.id is None


def test_update_closes_session(session_store):
    stored = session_store.create(make_session())
    stored.end_session(datetime(2024, 1, 2, 10, 5, 30))

    session_store.update(
        stored.id,
        end_time=stored.end_time,
        duration=stored.duration,
        is_active=False,
        updated_at=stored.updated_at,
    )

    (loaded,) = session_store.recent_sessions()
    assert loaded.duration == 330
    assert loaded.end_time == datetime(2024, 1, 2, 10, 5, 30)
    assert loaded.is_active is False
    assert loaded.is_ongoing is False


def test_update_rejects_unknown_session_and_field(session_store):
    stored = session_store.create(make_session())

    with pytest.raises(ValueError):
        session_store.update(stored.id + 1, is_active=False)
    with pytest.raises(ValueError):
        session_store.update(stored.id, colour="red")


def test_recent_sessions_newest_first(session_store):
    for minute in (0, 10, 5):
        session_store.create(make_session(start_time=datetime(2024, 1, 2, 10, minute)))

    starts = [s.start_time.minute for s in session_store.recent_sessions(limit=2)]

    assert starts == [10, 5]


def test_rows_round_trip_through_connection(tmp_path):
    path = tmp_path / "sessions.sqlite3"
    store = SqliteSessionStore(path)
    store.create(make_session(window_title=None, is_idle=True))
    store.close()

    with database_connection(path) as conn:
        row = conn.execute("SELECT * FROM activity_sessions").fetchone()

    session = row_to_session(row)
    assert session.window_title is None
    assert session.is_idle is True
    assert session.category == "Development"
