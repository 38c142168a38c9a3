"""Local queue transport for envelopes.

Stands in for the chat transport: one side sends serialized envelopes,
the polling side drains them.  Two queue backends:

1. **SQLite queue** (``queue_db_path`` provided): persistent, survives a
   restart and can be shared between a sending and a polling process.
   Each channel (chat room) is a separate FIFO inside the same table.
2. **In-memory deque** (``queue_db_path`` is None): volatile, suitable for
   tests and single-process demos.

Both are bounded (default 1024 messages per channel).
"""

from __future__ import annotations

import collections
import logging
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from clinenvelope.core.wire import serialize_envelope
from clinenvelope.errors import TransportError
from clinenvelope.models.envelope import Envelope

logger = logging.getLogger(__name__)


class _Backend(Protocol):
    def push(self, payload: bytes) -> None: ...

    def pop(self) -> bytes | None: ...

    def count(self) -> int: ...

    def close(self) -> None: ...


class _MemoryBackend:
    def __init__(self) -> None:
        self._messages: collections.deque[bytes] = collections.deque()

    def push(self, payload: bytes) -> None:
        self._messages.append(payload)

    def pop(self) -> bytes | None:
        return self._messages.popleft() if self._messages else None

    def count(self) -> int:
        return len(self._messages)

    def close(self) -> None:
        self._messages.clear()


_CREATE_QUEUE = """
CREATE TABLE IF NOT EXISTS envelope_queue (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    channel     TEXT NOT NULL,
    payload     BLOB NOT NULL,
    enqueued_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


class _SqliteBackend:
    def __init__(self, db_path: Path, channel: str) -> None:
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._channel = channel
        self._conn: sqlite3.Connection | None = sqlite3.connect(str(db_path))
        self._conn.execute(_CREATE_QUEUE)
        self._conn.commit()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise TransportError("Transport queue is closed")
        return self._conn

    def push(self, payload: bytes) -> None:
        with self.conn:
            self.conn.execute(
                "INSERT INTO envelope_queue (channel, payload) VALUES (?, ?)",
                (self._channel, payload),
            )

    def pop(self) -> bytes | None:
        with self.conn:
            row = self.conn.execute(
                "SELECT id, payload FROM envelope_queue WHERE channel = ? ORDER BY id LIMIT 1",
                (self._channel,),
            ).fetchone()
            if row is None:
                return None
            self.conn.execute("DELETE FROM envelope_queue WHERE id = ?", (row[0],))
        return bytes(row[1])

    def count(self) -> int:
        (depth,) = self.conn.execute(
            "SELECT COUNT(*) FROM envelope_queue WHERE channel = ?", (self._channel,)
        ).fetchone()
        return depth

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class QueueTransport:
    """Send/receive interface over a local FIFO queue.

    Parameters
    ----------
    channel:
        Logical channel name, e.g. the chat room the envelopes belong to.
    max_local_queue:
        Maximum depth of the channel's queue.
    queue_db_path:
        Path to a SQLite database file for persistent queue storage.
        When ``None``, an in-memory deque is used (volatile).
    """

    def __init__(
        self,
        channel: str = "clinenvelope",
        *,
        max_local_queue: int = 1024,
        queue_db_path: Path | None = None,
    ) -> None:
        self._channel = channel
        self._max_depth = max_local_queue
        self._backend: _Backend
        if queue_db_path is not None:
            self._backend = _SqliteBackend(queue_db_path, channel)
            logger.info(
                "QueueTransport[%s]: SQLite queue at %s (max_depth=%d).",
                channel,
                queue_db_path,
                max_local_queue,
            )
        else:
            self._backend = _MemoryBackend()
            logger.debug("QueueTransport[%s]: in-memory queue (max_depth=%d).", channel, max_local_queue)

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def is_persistent(self) -> bool:
        return isinstance(self._backend, _SqliteBackend)

    @property
    def depth(self) -> int:
        """Number of messages waiting on this channel."""
        return self._backend.count()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, envelope: Envelope) -> str:
        """Serialize and enqueue an envelope.

        Returns
        -------
        str
            The ``id`` of the sent envelope.

        Raises
        ------
        TransportError
            If the queue is full.
        """
        self._enqueue(serialize_envelope(envelope).encode("utf-8"), envelope.id)
        return envelope.id

    def send_raw(self, payload: str | bytes) -> None:
        """Enqueue raw text as-is, e.g. an envelope produced elsewhere."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self._enqueue(payload, "<raw>")

    def _enqueue(self, payload: bytes, label: str) -> None:
        depth = self._backend.count()
        if depth >= self._max_depth:
            raise TransportError(
                f"Transport queue {self._channel!r} is full (depth={depth}); envelope {label} dropped."
            )
        self._backend.push(payload)
        logger.debug("Queued envelope %s on %s (depth=%d).", label, self._channel, depth + 1)

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    def receive(self) -> bytes | None:
        """Dequeue the oldest message, or ``None`` if the queue is empty."""
        return self._backend.pop()

    def drain(self, *, max_messages: int = 100) -> list[bytes]:
        """Dequeue up to *max_messages* messages, oldest first."""
        drained: list[bytes] = []
        while len(drained) < max_messages:
            message = self._backend.pop()
            if message is None:
                break
            drained.append(message)
        if drained:
            logger.debug("Drained %d message(s) from %s.", len(drained), self._channel)
        return drained

    def close(self) -> None:
        """Release the backend.  In-memory messages are discarded."""
        self._backend.close()

    def __enter__(self) -> QueueTransport:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        backend = "sqlite-queue" if self.is_persistent else "local-queue"
        return f"QueueTransport(channel={self._channel!r}, backend={backend})"
