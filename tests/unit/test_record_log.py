"""Unit tests for the append-only record logs (in-memory and SQLite)."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from clinenvelope.core.record_log import InMemoryRecordLog, RecordLog, SqliteRecordLog
from clinenvelope.models.records import CorrelationRecord, DomainRecord

BASE = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def log(request, tmp_dir: Path) -> RecordLog[CorrelationRecord]:
    if request.param == "memory":
        return InMemoryRecordLog()
    return SqliteRecordLog(tmp_dir / "log.db", CorrelationRecord)


class TestRecordLogContract:
    def test_satisfies_protocol(self, log):
        assert isinstance(log, RecordLog)

    def test_empty(self, log):
        assert len(log) == 0
        assert log.snapshot() == []
        assert log.find(lambda r: True) is None

    def test_append_returns_record(self, log):
        record = CorrelationRecord(envelope_id="e-1")
        assert log.append(record) == record
        assert len(log) == 1

    def test_snapshot_newest_first(self, log):
        for minutes, name in [(0, "a"), (10, "c"), (5, "b")]:
            log.append(CorrelationRecord(envelope_id=name, recorded_at=BASE + timedelta(minutes=minutes)))
        assert [r.envelope_id for r in log.snapshot()] == ["c", "b", "a"]

    def test_ties_keep_later_append_first(self, log):
        log.append(CorrelationRecord(envelope_id="first", recorded_at=BASE))
        log.append(CorrelationRecord(envelope_id="second", recorded_at=BASE))
        assert [r.envelope_id for r in log.snapshot()] == ["second", "first"]

    def test_snapshot_is_a_copy(self, log):
        log.append(CorrelationRecord(envelope_id="e-1"))
        snapshot = log.snapshot()
        snapshot.clear()
        assert len(log.snapshot()) == 1

    def test_find_returns_first_appended(self, log):
        log.append(CorrelationRecord(envelope_id="dup", description="one", recorded_at=BASE))
        log.append(
            CorrelationRecord(envelope_id="dup", description="two", recorded_at=BASE + timedelta(hours=1))
        )
        found = log.find(lambda r: r.envelope_id == "dup")
        assert found.description == "one"

    def test_round_trips_all_fields(self, log):
        record = CorrelationRecord(
            envelope_id="e-1",
            event_code="request",
            subject_name="Max Mustermann",
            metadata={"k": [1, 2]},
            recorded_at=BASE,
        )
        log.append(record)
        assert log.snapshot()[0] == record


class TestConcurrentAppend:
    def test_threads_do_not_lose_records(self):
        log: InMemoryRecordLog[CorrelationRecord] = InMemoryRecordLog()

        def worker(n: int) -> None:
            for i in range(50):
                log.append(CorrelationRecord(envelope_id=f"{n}-{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(log) == 400
        assert len({r.envelope_id for r in log.snapshot()}) == 400


class TestSqliteRecordLog:
    def test_persists_across_instances(self, tmp_dir: Path):
        path = tmp_dir / "received.db"
        SqliteRecordLog(path, DomainRecord).append(DomainRecord(patient_name="Max Mustermann"))
        reopened = SqliteRecordLog(path, DomainRecord)
        assert [r.patient_name for r in reopened.snapshot()] == ["Max Mustermann"]

    def test_creates_parent_directory(self, tmp_dir: Path):
        path = tmp_dir / "nested" / "dir" / "log.db"
        SqliteRecordLog(path, DomainRecord)
        assert path.exists()

    def test_duplicate_record_id_rejected(self, tmp_dir: Path):
        log = SqliteRecordLog(tmp_dir / "log.db", CorrelationRecord)
        record = CorrelationRecord(envelope_id="e-1")
        log.append(record)
        with pytest.raises(sqlite3.IntegrityError):
            log.append(record)

    def test_repr(self, tmp_dir: Path):
        log = SqliteRecordLog(tmp_dir / "log.db", CorrelationRecord)
        assert "CorrelationRecord" in repr(log)

    def test_connections_are_closed(self, tmp_dir: Path, monkeypatch):
        log = SqliteRecordLog(tmp_dir / "log.db", CorrelationRecord)
        opened: list[sqlite3.Connection] = []
        connect = log._connect

        def tracking_connect() -> sqlite3.Connection:
            conn = connect()
            opened.append(conn)
            return conn

        monkeypatch.setattr(log, "_connect", tracking_connect)
        record = log.append(CorrelationRecord(envelope_id="e-1"))
        log.snapshot()
        len(log)
        with pytest.raises(sqlite3.IntegrityError):
            log.append(record)

        assert len(opened) == 4
        for conn in opened:
            with pytest.raises(sqlite3.ProgrammingError):
                conn.execute("SELECT 1")
