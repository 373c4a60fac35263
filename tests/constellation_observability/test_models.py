"""Tests for the event envelope types and timestamp helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from constellation_observability.models import (
    SCHEMA_VERSION,
    Event,
    EventContext,
    EventKind,
    EventKindInfo,
    EventSource,
    MachineInfo,
    ParentLink,
    format_timestamp,
    is_valid_kind,
    parse_timestamp,
)


@pytest.fixture
def sample_event() -> Event:
    return Event(
        schema_version=SCHEMA_VERSION,
        ts="2026-03-01T10:15:30.123Z",
        event_id="01HX0000000000000000000001",
        machine=MachineInfo(id="constellation-abc123", hostname="devbox"),
        context=EventContext(session_id="S1", actor="planner", phase="before"),
        event=EventKindInfo(kind="constellation:tool_execute", tags=["io", "db"]),
        source=EventSource(component="tool-executor", version="0.3.1"),
        data={"tool_name": "db-query", "args": {"sql": "select 1"}},
        parent=ParentLink(event_id="01HX0000000000000000000000", trace_id="T1"),
    )


class TestTimestamps:
    def test_format_uses_millis_and_z(self) -> None:
        dt = datetime(2026, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
        assert format_timestamp(dt) == "2026-01-02T03:04:05.678Z"

    def test_format_converts_to_utc(self) -> None:
        dt = datetime(2026, 1, 2, 5, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(dt) == "2026-01-02T03:00:00.000Z"

    def test_naive_treated_as_utc(self) -> None:
        assert format_timestamp(datetime(2026, 1, 2)) == "2026-01-02T00:00:00.000Z"

    def test_parse_round_trip(self) -> None:
        parsed = parse_timestamp("2026-01-02T03:04:05.678Z")
        assert parsed == datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)


class TestKinds:
    @pytest.mark.parametrize(
        "kind",
        ["error", "metric", "log", "span", "session_start", "session_end", "session_summary"],
    )
    def test_standard_kinds_valid(self, kind: str) -> None:
        assert is_valid_kind(kind)

    @pytest.mark.parametrize("kind", ["constellation:tool_execute", "myplugin:cache_hit"])
    def test_namespaced_kinds_valid(self, kind: str) -> None:
        assert is_valid_kind(kind)

    @pytest.mark.parametrize("kind", ["", "tool_execute", ":missing", "ns:", "  :x"])
    def test_invalid_kinds(self, kind: str) -> None:
        assert not is_valid_kind(kind)

    def test_enum_values_are_strings(self) -> None:
        assert EventKind.TOOL_EXECUTE == "constellation:tool_execute"


class TestEventSerialization:
    def test_to_dict_shape(self, sample_event: Event) -> None:
        d = sample_event.to_dict()
        assert d["machine"] == {"id": "constellation-abc123", "hostname": "devbox"}
        assert d["event"] == {"kind": "constellation:tool_execute", "tags": ["io", "db"]}
        assert d["parent"] == {"event_id": "01HX0000000000000000000000", "trace_id": "T1"}

    def test_from_dict_inverse(self, sample_event: Event) -> None:
        assert Event.from_dict(sample_event.to_dict()) == sample_event

    def test_optional_sections_omitted(self) -> None:
        event = Event(
            schema_version=SCHEMA_VERSION,
            ts="2026-03-01T10:15:30.123Z",
            event_id="01HX0000000000000000000002",
            machine=MachineInfo(id="m"),
            context=EventContext(),
            event=EventKindInfo(kind="metric"),
            source=EventSource(component="metrics"),
        )
        d = event.to_dict()
        assert d["context"] == {}
        assert d["parent"] == {}
        assert "tags" not in d["event"]
        assert event.parent.is_empty

    def test_convenience_properties(self, sample_event: Event) -> None:
        assert sample_event.kind == "constellation:tool_execute"
        assert sample_event.session_id == "S1"

    def test_event_is_immutable(self, sample_event: Event) -> None:
        with pytest.raises(AttributeError):
            sample_event.event_id = "other"  # type: ignore[misc]
