"""EventStore: SQLite-backed append-only event table.

Persists Event envelopes to ``<data_dir>/observability.db``. Supports:

- Idempotent schema creation (CREATE IF NOT EXISTS, never drops data)
- One atomic INSERT per event, serialized by an in-process lock
- Filtered, paginated reads through EventQuery
- Clean failure after close()
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from types import TracebackType
from typing import Any

from .errors import DuplicateEventError, StoreClosedError, StoreError
from .models import Event
from .query import EventQuery, join_tags, row_to_event

logger = logging.getLogger(__name__)

DB_FILENAME = "observability.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    schema_version TEXT NOT NULL,
    ts TEXT NOT NULL,
    event_id TEXT PRIMARY KEY,
    machine_id TEXT NOT NULL,
    machine_hostname TEXT,
    context_session_id TEXT,
    context_actor TEXT,
    context_phase TEXT,
    event_kind TEXT NOT NULL,
    event_tags TEXT,
    source_component TEXT NOT NULL,
    source_version TEXT,
    data TEXT NOT NULL,
    parent_event_id TEXT,
    parent_trace_id TEXT,
    parent_span_id TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_kind ON events(event_kind)",
    "CREATE INDEX IF NOT EXISTS idx_session_id ON events(context_session_id)",
    "CREATE INDEX IF NOT EXISTS idx_ts ON events(ts)",
    "CREATE INDEX IF NOT EXISTS idx_machine_id ON events(machine_id)",
    "CREATE INDEX IF NOT EXISTS idx_parent_event_id ON events(parent_event_id)",
    "CREATE INDEX IF NOT EXISTS idx_parent_trace_id ON events(parent_trace_id)",
)

_INSERT = """
INSERT INTO events (
    schema_version, ts, event_id, machine_id, machine_hostname,
    context_session_id, context_actor, context_phase,
    event_kind, event_tags, source_component, source_version,
    data, parent_event_id, parent_trace_id, parent_span_id
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def _json_default(o: Any) -> Any:
    return o.isoformat() if hasattr(o, "isoformat") else str(o)


class EventStore:
    """SQLite-backed store for observability events.

    One long-lived connection is shared by every caller in the process;
    a lock serializes commits so concurrent writers never interleave and
    readers never see a half-written row.

    Args:
        db_path: Path to the SQLite database. Parent directories are
            created automatically.
        timeout: Seconds to wait on SQLite file locks held by other
            processes.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self.db_path,
                timeout=timeout,
                check_same_thread=False,
            )
            self._init_db()
        except (OSError, sqlite3.Error) as exc:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            raise StoreError(f"Cannot open event store {self.db_path}: {exc}") from exc

    @classmethod
    def initialize(cls, data_dir: Path, timeout: float = 5.0) -> EventStore:
        """Open (creating if absent) the store inside *data_dir*."""
        return cls(Path(data_dir) / DB_FILENAME, timeout=timeout)

    def _init_db(self) -> None:
        """Initialize database schema with indexes"""
        assert self._conn is not None
        with self._conn:
            self._conn.execute(_SCHEMA)
            for statement in _INDEXES:
                self._conn.execute(statement)
        logger.debug("Event store ready at %s", self.db_path)

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreClosedError(self.db_path)
        return self._conn

    @property
    def closed(self) -> bool:
        return self._conn is None

    def append(self, event: Event) -> None:
        """Insert *event* as a single committed row.

        Raises:
            DuplicateEventError: If event_id is already stored.
            StoreClosedError: If the store was closed.
            StoreError: On any other storage fault.
        """
        params = (
            event.schema_version,
            event.ts,
            event.event_id,
            event.machine.id,
            event.machine.hostname,
            event.context.session_id,
            event.context.actor,
            event.context.phase,
            event.event.kind,
            join_tags(event.event.tags),
            event.source.component,
            event.source.version,
            json.dumps(event.data, default=_json_default),
            event.parent.event_id,
            event.parent.trace_id,
            event.parent.span_id,
        )

        with self._lock:
            conn = self._require_conn()
            try:
                with conn:
                    conn.execute(_INSERT, params)
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" in str(exc) or "PRIMARY KEY" in str(exc):
                    raise DuplicateEventError(event.event_id) from exc
                raise StoreError(f"Failed to append event {event.event_id}: {exc}") from exc
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to append event {event.event_id}: {exc}") from exc

        logger.debug("Appended %s event %s", event.event.kind, event.event_id)

    def query(self, query: EventQuery | None = None) -> list[Event]:
        """Return events matching *query*, most recent first."""
        sql, params = (query or EventQuery()).to_sql()
        with self._lock:
            conn = self._require_conn()
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Event query failed: {exc}") from exc
        return [row_to_event(row) for row in rows]

    def get(self, event_id: str) -> Event | None:
        """Fetch a single event by id."""
        events = self.query(EventQuery(event_id=event_id, limit=1))
        return events[0] if events else None

    def count(self) -> int:
        """Get number of stored events."""
        with self._lock:
            conn = self._require_conn()
            try:
                row = conn.execute("SELECT COUNT(*) FROM events").fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Event count failed: {exc}") from exc
        if row is None:
            return 0
        return int(row[0])

    def close(self) -> None:
        """Release the connection. Safe to call multiple times."""
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.debug("Event store closed: %s", self.db_path)

    def __enter__(self) -> EventStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
