"""Session persistence: the store protocol and its SQLite implementation."""

from __future__ import annotations

import dataclasses
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional, Protocol

from .models import ActivitySession


DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"


class SessionStore(Protocol):
    """Persists activity sessions on behalf of the monitor."""

    def create(self, session: ActivitySession) -> ActivitySession: ...

    def update(self, session_id: int, **fields: Any) -> None: ...


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS activity_sessions (
            id INTEGER PRIMARY KEY,
            start_time TEXT NOT NULL,
            end_time TEXT,
            duration_seconds INTEGER,
            application_name TEXT NOT NULL,
            application_path TEXT,
            window_title TEXT,
            category TEXT,
            productivity_score REAL,
            is_idle INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            hostname TEXT,
            os_name TEXT,
            created_at TEXT,
            updated_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_start_time
            ON activity_sessions(start_time);
        """
    )


_COLUMNS = {
    "start_time": "start_time",
    "end_time": "end_time",
    "duration": "duration_seconds",
    "application_name": "application_name",
    "application_path": "application_path",
    "window_title": "window_title",
    "category": "category",
    "productivity_score": "productivity_score",
    "is_idle": "is_idle",
    "is_active": "is_active",
    "hostname": "hostname",
    "os_name": "os_name",
    "created_at": "created_at",
    "updated_at": "updated_at",
}


def _to_db(value: object) -> object:
    if isinstance(value, datetime):
        return value.strftime(DATETIME_FMT)
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.strptime(value, DATETIME_FMT) if value else None


def insert_session(conn: sqlite3.Connection, session: ActivitySession) -> int:
    columns = list(_COLUMNS.values())
    cur = conn.execute(
        f"INSERT INTO activity_sessions ({', '.join(columns)}) "
        f"VALUES ({', '.join('?' for _ in columns)})",
        [_to_db(getattr(session, attr)) for attr in _COLUMNS],
    )
    return int(cur.lastrowid)


def update_session(conn: sqlite3.Connection, session_id: int, **fields: Any) -> None:
    """Update a single session record."""
    unknown = set(fields) - set(_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown session field(s): {', '.join(sorted(unknown))}")
    if not fields:
        return

    assignments = [f"{_COLUMNS[name]} = ?" for name in fields]
    params = [_to_db(value) for value in fields.values()]
    params.append(session_id)
    cur = conn.execute(
        f"UPDATE activity_sessions SET {', '.join(assignments)} WHERE id = ?",
        params,
    )
    if cur.rowcount == 0:
        raise ValueError(f"No session found for id={session_id}")


def row_to_session(row: sqlite3.Row) -> ActivitySession:
    return ActivitySession(
        id=row["id"],
        start_time=datetime.strptime(row["start_time"], DATETIME_FMT),
        end_time=_parse_datetime(row["end_time"]),
        duration=row["duration_seconds"],
        application_name=row["application_name"],
        application_path=row["application_path"],
        window_title=row["window_title"],
        category=row["category"],
        productivity_score=row["productivity_score"],
        is_idle=bool(row["is_idle"]),
        is_active=bool(row["is_active"]),
        hostname=row["hostname"],
        os_name=row["os_name"],
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def fetch_recent_sessions(conn: sqlite3.Connection, limit: int = 20) -> list[ActivitySession]:
    rows = conn.execute(
        "SELECT * FROM activity_sessions ORDER BY start_time DESC LIMIT ?",
        (limit,),
    )
    return [row_to_session(row) for row in rows]


class SqliteSessionStore:
    """:class:`SessionStore` backed by a local SQLite file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = open_database(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()

    def create(self, session: ActivitySession) -> ActivitySession:
        now = datetime.now()
        stored = dataclasses.replace(
            session,
            created_at=session.created_at or now,
            updated_at=session.updated_at or now,
        )
        with self._lock:
            stored.id = insert_session(self._conn, stored)
        return stored

    def update(self, session_id: int, **fields: Any) -> None:
        with self._lock:
            update_session(self._conn, session_id, **fields)

    def recent_sessions(self, limit: int = 20) -> list[ActivitySession]:
        with self._lock:
            return fetch_recent_sessions(self._conn, limit)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
