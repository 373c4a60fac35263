"""Canonical event envelope for the observability store.

Defines the envelope data types: EventKind, MachineInfo, EventContext,
EventKindInfo, EventSource, ParentLink and Event, plus the UTC timestamp
helpers shared by the writers and the query layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

SCHEMA_VERSION = "1.0"


class EventKind(StrEnum):
    """Reserved standard kinds plus the constellation custom kinds."""

    ERROR = "error"
    METRIC = "metric"
    LOG = "log"
    SPAN = "span"
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SESSION_SUMMARY = "session_summary"

    TOOL_EXECUTE = "constellation:tool_execute"
    HOOK_FIRED = "constellation:hook_fired"
    AGENT_SPAWNED = "constellation:agent_spawned"
    SKILL_LOADED = "constellation:skill_loaded"
    COMMAND_EXECUTED = "constellation:command_executed"
    PLUGIN_EVENT = "constellation:plugin_event"


STANDARD_KINDS = frozenset(
    {
        EventKind.ERROR,
        EventKind.METRIC,
        EventKind.LOG,
        EventKind.SPAN,
        EventKind.SESSION_START,
        EventKind.SESSION_END,
        EventKind.SESSION_SUMMARY,
    }
)


def is_valid_kind(kind: str) -> bool:
    """A kind is either reserved or namespaced as ``<namespace>:<name>``."""
    if kind in STANDARD_KINDS:
        return True
    namespace, sep, name = kind.partition(":")
    return bool(sep and namespace.strip() and name.strip())


def format_timestamp(dt: datetime) -> str:
    """Render *dt* as UTC ISO 8601 with millisecond precision and ``Z``.

    Naive datetimes are treated as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ``ts`` value back into an aware datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _drop_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class MachineInfo:
    """Identity of the host environment that produced the event."""

    id: str
    hostname: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({"id": self.id, "hostname": self.hostname})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MachineInfo:
        return cls(id=data["id"], hostname=data.get("hostname"))


@dataclass(frozen=True)
class EventContext:
    """Logical execution context the event occurred in."""

    session_id: str | None = None
    actor: str | None = None
    phase: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {"session_id": self.session_id, "actor": self.actor, "phase": self.phase}
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventContext:
        return cls(
            session_id=data.get("session_id"),
            actor=data.get("actor"),
            phase=data.get("phase"),
        )


@dataclass(frozen=True)
class EventKindInfo:
    """Event category and free-form classification labels."""

    kind: str
    tags: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"kind": self.kind}
        if self.tags:
            d["tags"] = list(self.tags)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventKindInfo:
        tags = data.get("tags")
        return cls(kind=data["kind"], tags=list(tags) if tags else None)


@dataclass(frozen=True)
class EventSource:
    """Internal subsystem that emitted the event."""

    component: str
    version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({"component": self.component, "version": self.version})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventSource:
        return cls(component=data["component"], version=data.get("version"))


@dataclass(frozen=True)
class ParentLink:
    """Causal links to other events."""

    event_id: str | None = None
    trace_id: str | None = None
    span_id: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.event_id or self.trace_id or self.span_id)

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {"event_id": self.event_id, "trace_id": self.trace_id, "span_id": self.span_id}
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ParentLink:
        if not data:
            return cls()
        return cls(
            event_id=data.get("event_id"),
            trace_id=data.get("trace_id"),
            span_id=data.get("span_id"),
        )


@dataclass(frozen=True)
class Event:
    """Immutable record of one observed occurrence.

    Each event is one row in observability.db.
    """

    schema_version: str
    ts: str  # ISO 8601 UTC, millisecond precision
    event_id: str  # ULID
    machine: MachineInfo
    context: EventContext
    event: EventKindInfo
    source: EventSource
    data: dict[str, Any] = field(default_factory=dict)
    parent: ParentLink = field(default_factory=ParentLink)

    @property
    def kind(self) -> str:
        return self.event.kind

    @property
    def session_id(self) -> str | None:
        return self.context.session_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "ts": self.ts,
            "event_id": self.event_id,
            "machine": self.machine.to_dict(),
            "context": self.context.to_dict(),
            "event": self.event.to_dict(),
            "source": self.source.to_dict(),
            "data": dict(self.data),
            "parent": self.parent.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        return cls(
            schema_version=data["schema_version"],
            ts=data["ts"],
            event_id=data["event_id"],
            machine=MachineInfo.from_dict(data["machine"]),
            context=EventContext.from_dict(data.get("context") or {}),
            event=EventKindInfo.from_dict(data["event"]),
            source=EventSource.from_dict(data["source"]),
            data=dict(data.get("data") or {}),
            parent=ParentLink.from_dict(data.get("parent")),
        )
