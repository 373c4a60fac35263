"""Query layer for event filtering and retrieval.

Provides the EventQuery dataclass for conjunctive event filtering and the
row decoding that turns stored rows back into Event envelopes.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .models import (
    Event,
    EventContext,
    EventKindInfo,
    EventSource,
    MachineInfo,
    ParentLink,
    format_timestamp,
    parse_timestamp,
)

TAG_SEPARATOR = ","

SELECT_COLUMNS = (
    "schema_version",
    "ts",
    "event_id",
    "machine_id",
    "machine_hostname",
    "context_session_id",
    "context_actor",
    "context_phase",
    "event_kind",
    "event_tags",
    "source_component",
    "source_version",
    "data",
    "parent_event_id",
    "parent_trace_id",
    "parent_span_id",
)


def _normalize_ts(value: str | datetime | None) -> str | None:
    """Render a bound in the stored ``ts`` format so text comparison is exact."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = parse_timestamp(value)
        except ValueError:
            raise ValueError(f"Invalid ISO 8601 timestamp bound: {value!r}") from None
    return format_timestamp(value)


@dataclass(frozen=True)
class EventQuery:
    """Filter criteria for stored events.

    All fields are optional. When provided, they act as AND conditions.
    Results are ordered most recent first; limit/offset apply after
    ordering.

    Attributes:
        kind: Filter by event kind (e.g., 'error', 'constellation:tool_execute').
        session_id: Filter by context session id.
        machine_id: Filter by machine identity.
        start_ts: Only include events at or after this timestamp.
        end_ts: Only include events at or before this timestamp.
        limit: Maximum number of events to return.
        offset: Number of events to skip.
        event_id: Fetch a single event by id.
        parent_event_id: Events caused by the given event.
        trace_id: Events belonging to the given trace.
    """

    kind: str | None = None
    session_id: str | None = None
    machine_id: str | None = None
    start_ts: str | datetime | None = None
    end_ts: str | datetime | None = None
    limit: int | None = None
    offset: int | None = None
    event_id: str | None = None
    parent_event_id: str | None = None
    trace_id: str | None = None

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")
        if self.offset is not None and self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        _normalize_ts(self.start_ts)
        _normalize_ts(self.end_ts)

    def to_sql(self) -> tuple[str, list[Any]]:
        """Build the SELECT statement and its parameters."""
        clauses: list[str] = []
        params: list[Any] = []

        equality = (
            ("event_kind", self.kind),
            ("context_session_id", self.session_id),
            ("machine_id", self.machine_id),
            ("event_id", self.event_id),
            ("parent_event_id", self.parent_event_id),
            ("parent_trace_id", self.trace_id),
        )
        for column, value in equality:
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        start = _normalize_ts(self.start_ts)
        if start is not None:
            clauses.append("ts >= ?")
            params.append(start)
        end = _normalize_ts(self.end_ts)
        if end is not None:
            clauses.append("ts <= ?")
            params.append(end)

        sql = f"SELECT {', '.join(SELECT_COLUMNS)} FROM events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        # event_id breaks ties between events stamped in the same millisecond
        sql += " ORDER BY ts DESC, event_id DESC"

        if self.limit is not None or self.offset is not None:
            # SQLite requires LIMIT before OFFSET; -1 means unbounded
            sql += " LIMIT ?"
            params.append(self.limit if self.limit is not None else -1)
            if self.offset is not None:
                sql += " OFFSET ?"
                params.append(self.offset)

        return sql, params


def split_tags(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return raw.split(TAG_SEPARATOR)


def join_tags(tags: list[str] | None) -> str | None:
    if not tags:
        return None
    for tag in tags:
        if not tag:
            raise ValueError("Tag must not be empty")
        if TAG_SEPARATOR in tag:
            raise ValueError(f"Tag must not contain '{TAG_SEPARATOR}': {tag!r}")
    return TAG_SEPARATOR.join(tags)


def row_to_event(row: sqlite3.Row | tuple[Any, ...]) -> Event:
    """Rebuild the full envelope from a row selected with SELECT_COLUMNS."""
    values = dict(zip(SELECT_COLUMNS, tuple(row)))
    return Event(
        schema_version=values["schema_version"],
        ts=values["ts"],
        event_id=values["event_id"],
        machine=MachineInfo(id=values["machine_id"], hostname=values["machine_hostname"]),
        context=EventContext(
            session_id=values["context_session_id"],
            actor=values["context_actor"],
            phase=values["context_phase"],
        ),
        event=EventKindInfo(kind=values["event_kind"], tags=split_tags(values["event_tags"])),
        source=EventSource(
            component=values["source_component"],
            version=values["source_version"],
        ),
        data=json.loads(values["data"]),
        parent=ParentLink(
            event_id=values["parent_event_id"],
            trace_id=values["parent_trace_id"],
            span_id=values["parent_span_id"],
        ),
    )
