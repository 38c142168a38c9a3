"""Append-only record logs (received records, sent correlation records).

Design:
- Append-only: only ``append()``; no update, no delete, no eviction.
- Exclusive access: append and snapshot are serialized by a lock.
- Snapshots are copies sorted newest first.
- Logs are injected, never process-wide singletons.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Callable
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Generic, Protocol, TypeVar, runtime_checkable

from clinenvelope.models.records import LogRecord

T = TypeVar("T", bound=LogRecord)


@runtime_checkable
class RecordLog(Protocol[T]):
    """Protocol for an exclusive-access, append-only record store."""

    def append(self, record: T) -> T:
        """Add a record.  Returns the stored record."""
        ...

    def snapshot(self) -> list[T]:
        """Return all records, newest first."""
        ...

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        """Return the first-recorded record matching *predicate*."""
        ...

    def __len__(self) -> int: ...


def _newest_first(records: list[T]) -> list[T]:
    # Ties on recorded_at fall back to append order, later first.
    indexed = sorted(
        enumerate(records),
        key=lambda pair: (pair[1].recorded_at, pair[0]),
        reverse=True,
    )
    return [record for _, record in indexed]


class InMemoryRecordLog(Generic[T]):
    """Volatile record log for tests and single-process use."""

    def __init__(self) -> None:
        self._records: list[T] = []
        self._lock = threading.Lock()

    def append(self, record: T) -> T:
        with self._lock:
            self._records.append(record)
        return record

    def snapshot(self) -> list[T]:
        with self._lock:
            records = list(self._records)
        return _newest_first(records)

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        with self._lock:
            records = list(self._records)
        for record in records:
            if predicate(record):
                return record
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __repr__(self) -> str:
        return f"InMemoryRecordLog(records={len(self)})"


# ---------------------------------------------------------------------------
# SQLite-backed log
# ---------------------------------------------------------------------------

_CREATE_LOG = """
CREATE TABLE IF NOT EXISTS record_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id   TEXT NOT NULL UNIQUE,
    recorded_at TEXT NOT NULL,
    body_json   TEXT NOT NULL
);
"""


class SqliteRecordLog(Generic[T]):
    """Durable record log backed by SQLite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    model:
        The record model stored in this log, used to rebuild records.
    """

    def __init__(self, db_path: Path, model: type[T]) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._model = model
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(_CREATE_LOG)

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, record: T) -> T:
        """Persist a record.  This is the ONLY write method."""
        recorded_at = (
            record.recorded_at.isoformat()
            if isinstance(record.recorded_at, datetime)
            else str(record.recorded_at)
        )
        with self._lock, closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO record_log (record_id, recorded_at, body_json) VALUES (?, ?, ?)",
                (record.record_id, recorded_at, record.model_dump_json()),
            )
        return record

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def _all(self) -> list[T]:
        with self._lock, closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT body_json FROM record_log ORDER BY id ASC"
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: tuple) -> T:
        return self._model.model_validate(json.loads(row[0]))

    def snapshot(self) -> list[T]:
        return _newest_first(self._all())

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        for record in self._all():
            if predicate(record):
                return record
        return None

    def __len__(self) -> int:
        with self._lock, closing(self._connect()) as conn:
            row = conn.execute("SELECT COUNT(*) FROM record_log").fetchone()
        return row[0] if row else 0

    def __repr__(self) -> str:
        return f"SqliteRecordLog(db_path={str(self._db_path)!r}, model={self._model.__name__})"
