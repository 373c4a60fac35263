"""Envelope construction and typed event writers.

``Observability`` is the handle callers hold for the lifetime of the
process. Each write:
- Generates a monotonic ULID event ID
- Stamps the UTC timestamp and the resolved machine identity
- Checks ``data`` against the kind's payload contract
- Persists the envelope through the EventStore
- Returns the event ID so follow-up events can reference it as parent

Failures are raised to the caller; nothing is retried or swallowed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Any, Literal

from .config import ObservabilityConfig
from .errors import PayloadValidationError
from .identity import resolve_hostname, resolve_machine_id
from .ids import EventIdGenerator
from .models import (
    SCHEMA_VERSION,
    Event,
    EventContext,
    EventKind,
    EventKindInfo,
    EventSource,
    MachineInfo,
    ParentLink,
    is_valid_kind,
    utc_now_iso,
)
from .payloads import validate_payload
from .query import EventQuery, join_tags
from .store import EventStore

logger = logging.getLogger(__name__)

DEFAULT_COMPONENT = "constellation"


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop optional fields the caller did not supply."""
    return {k: v for k, v in data.items() if v is not None}


class Observability:
    """Handle over one data directory: identity, id source and store.

    Construct once per process and pass it to every component that emits
    events. Each test can build its own handle against ``tmp_path``.

    Args:
        data_dir: Directory holding ``.machine_id`` and ``observability.db``.
        machine_id: Explicit identity; otherwise ``MACHINE_ID`` or the
            persisted file is used.
        record_hostname: Include the local hostname in ``machine``.
        source_version: Default ``source.version`` for every event.
        validate: Reject events whose ``data`` breaks the kind contract.
    """

    def __init__(
        self,
        data_dir: Path | str = "data",
        *,
        machine_id: str | None = None,
        record_hostname: bool = True,
        source_version: str | None = None,
        validate: bool = True,
    ) -> None:
        self.data_dir = Path(data_dir).resolve()
        self._machine_id = resolve_machine_id(self.data_dir, override=machine_id)
        self._hostname = resolve_hostname() if record_hostname else None
        self._source_version = source_version
        self._validate = validate
        self._ids = EventIdGenerator()
        self.store = EventStore.initialize(self.data_dir)
        logger.info(
            "Observability initialized: data_dir=%s machine_id=%s",
            self.data_dir,
            self._machine_id,
        )

    @classmethod
    def from_config(cls, config: ObservabilityConfig) -> Observability:
        return cls(
            config.data_dir,
            machine_id=config.machine_id,
            record_hostname=config.record_hostname,
            source_version=config.source_version,
            validate=config.validate_payloads,
        )

    # ── Identity / lifecycle ──────────────────────────────────────────

    @property
    def machine_id(self) -> str:
        return self._machine_id

    def get_machine_id(self) -> str:
        return self._machine_id

    def close(self) -> None:
        self.store.close()
        logger.info("Observability closed: %s", self.data_dir)

    def __enter__(self) -> Observability:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ── Generic writer ────────────────────────────────────────────────

    def build_event(
        self,
        kind: str,
        data: dict[str, Any],
        *,
        session_id: str | None = None,
        actor: str | None = None,
        phase: str | None = None,
        component: str | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
        source_version: str | None = None,
    ) -> Event:
        """Assemble the full envelope without persisting it."""
        kind = str(kind)
        if self._validate:
            if not is_valid_kind(kind):
                raise PayloadValidationError(
                    kind,
                    ["kind must be a reserved kind or namespaced as '<namespace>:<name>'"],
                )
            data = validate_payload(kind, data)
        try:
            join_tags(tags)
        except ValueError as exc:
            raise PayloadValidationError(kind, [f"tags: {exc}"]) from exc

        return Event(
            schema_version=SCHEMA_VERSION,
            ts=utc_now_iso(),
            event_id=self._ids.next(),
            machine=MachineInfo(id=self._machine_id, hostname=self._hostname),
            context=EventContext(session_id=session_id, actor=actor, phase=phase),
            event=EventKindInfo(kind=kind, tags=list(tags) if tags else None),
            source=EventSource(
                component=component or DEFAULT_COMPONENT,
                version=source_version or self._source_version,
            ),
            data=dict(data),
            parent=ParentLink(
                event_id=parent_event_id,
                trace_id=parent_trace_id,
                span_id=parent_span_id,
            ),
        )

    def write_event(
        self,
        kind: str,
        data: dict[str, Any],
        *,
        session_id: str | None = None,
        actor: str | None = None,
        phase: str | None = None,
        component: str | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
        source_version: str | None = None,
    ) -> str:
        """Build, validate and persist an event of any kind.

        Returns:
            The new event_id.

        Raises:
            PayloadValidationError: If ``data`` breaks the kind contract or a
                tag is empty or contains a comma.
            StoreError: If the row could not be committed.
        """
        event = self.build_event(
            kind,
            data,
            session_id=session_id,
            actor=actor,
            phase=phase,
            component=component,
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
            source_version=source_version,
        )
        self.store.append(event)
        return event.event_id

    # ── constellation:* writers ───────────────────────────────────────

    def write_tool_execute(
        self,
        tool_name: str,
        args: dict[str, Any],
        phase: Literal["before", "after"],
        *,
        session_id: str,
        agent: str | None = None,
        result: Any = None,
        duration_ms: float | None = None,
        error: str | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        """Record a tool invocation; ``result``/``duration_ms`` kept only after."""
        data = _compact(
            {
                "tool_name": tool_name,
                "args": args,
                "context_session_id": session_id,
                "context_agent": agent,
                "phase": phase,
                "error": error,
            }
        )
        if phase == "after":
            data.update(_compact({"result": result, "duration_ms": duration_ms}))

        return self.write_event(
            EventKind.TOOL_EXECUTE,
            data,
            session_id=session_id,
            actor=agent,
            phase=phase,
            component="tool-executor",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_hook_fired(
        self,
        hook_name: str,
        plugin_name: str,
        *,
        session_id: str,
        event_payload: dict[str, Any] | None = None,
        duration_ms: float | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        data = _compact(
            {
                "hook_name": hook_name,
                "plugin_name": plugin_name,
                "context_session_id": session_id,
                "event_payload": event_payload,
                "duration_ms": duration_ms,
            }
        )
        return self.write_event(
            EventKind.HOOK_FIRED,
            data,
            session_id=session_id,
            component="hook-system",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_agent_spawned(
        self,
        agent_name: str,
        parent_session_id: str,
        child_session_id: str,
        *,
        agent_mode: Literal["subagent", "primary"] = "subagent",
        model: str | None = None,
        tools_enabled: list[str] | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        """Record an agent spawn. The event belongs to the parent session."""
        data = _compact(
            {
                "agent_name": agent_name,
                "parent_session_id": parent_session_id,
                "child_session_id": child_session_id,
                "agent_mode": agent_mode,
                "model": model,
                "tools_enabled": tools_enabled,
            }
        )
        return self.write_event(
            EventKind.AGENT_SPAWNED,
            data,
            session_id=parent_session_id,
            actor=agent_name,
            component="agent-manager",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_skill_loaded(
        self,
        skill_name: str,
        skill_path: str,
        *,
        session_id: str,
        agent: str | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        data = _compact(
            {
                "skill_name": skill_name,
                "skill_path": skill_path,
                "context_session_id": session_id,
                "context_agent": agent,
            }
        )
        return self.write_event(
            EventKind.SKILL_LOADED,
            data,
            session_id=session_id,
            actor=agent,
            component="skill-loader",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_command_executed(
        self,
        command_name: str,
        *,
        session_id: str,
        args: list[str] | None = None,
        duration_ms: float | None = None,
        result: str | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        data = _compact(
            {
                "command_name": command_name,
                "context_session_id": session_id,
                "args": args,
                "duration_ms": duration_ms,
                "result": result,
            }
        )
        return self.write_event(
            EventKind.COMMAND_EXECUTED,
            data,
            session_id=session_id,
            component="command-runner",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_plugin_event(
        self,
        plugin_name: str,
        event_type: str,
        *,
        session_id: str | None = None,
        event_data: dict[str, Any] | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        data = _compact(
            {
                "plugin_name": plugin_name,
                "event_type": event_type,
                "context_session_id": session_id,
                "event_data": event_data,
            }
        )
        return self.write_event(
            EventKind.PLUGIN_EVENT,
            data,
            session_id=session_id,
            component="plugin-manager",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    # ── Standard kind writers ─────────────────────────────────────────

    def write_error(
        self,
        error_type: str,
        message: str,
        *,
        session_id: str,
        retryable: bool = False,
        transient: bool = False,
        error_code: str | None = None,
        tool_name: str | None = None,
        invariants_violated: list[str] | None = None,
        raw_output: str | None = None,
        recovery_actions: list[str] | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        """Record an error. Tagged ``error`` plus the error type."""
        data = _compact(
            {
                "error_type": error_type,
                "message": message,
                "context_session_id": session_id,
                "retryable": retryable,
                "transient": transient,
                "error_code": error_code,
                "tool_name": tool_name,
                "invariants_violated": invariants_violated,
                "raw_output": raw_output,
                "recovery_actions": recovery_actions,
            }
        )
        return self.write_event(
            EventKind.ERROR,
            data,
            session_id=session_id,
            component="error-handler",
            tags=["error", error_type, *(tags or [])],
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_metric(
        self,
        metric_name: str,
        value: float,
        unit: str,
        *,
        session_id: str | None = None,
        dimensions: dict[str, Any] | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        data = _compact(
            {
                "metric_name": metric_name,
                "value": value,
                "unit": unit,
                "context_session_id": session_id,
                "dimensions": dimensions,
            }
        )
        return self.write_event(
            EventKind.METRIC,
            data,
            session_id=session_id,
            component="metrics",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_log(
        self,
        level: Literal["debug", "info", "warning", "error", "critical"],
        message: str,
        *,
        session_id: str | None = None,
        logger_name: str | None = None,
        fields: dict[str, Any] | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        data = _compact(
            {
                "level": level,
                "message": message,
                "context_session_id": session_id,
                "logger_name": logger_name,
                "fields": fields,
            }
        )
        return self.write_event(
            EventKind.LOG,
            data,
            session_id=session_id,
            component="logger",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_span(
        self,
        span_id: str,
        name: str,
        status: Literal["started", "completed", "failed"],
        *,
        session_id: str | None = None,
        parent_span_id: str | None = None,
        trace_id: str | None = None,
        start_ts: str | datetime | None = None,
        end_ts: str | datetime | None = None,
        duration_ms: float | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
    ) -> str:
        """Record a span lifecycle step.

        ``parent_span_id`` nests the span in ``data`` and in the parent
        link; ``trace_id`` fills the parent trace unless one is given.
        """
        data = _compact(
            {
                "span_id": span_id,
                "name": name,
                "status": status,
                "start_ts": start_ts or utc_now_iso(),
                "context_session_id": session_id,
                "parent_span_id": parent_span_id,
                "trace_id": trace_id,
                "end_ts": end_ts,
                "duration_ms": duration_ms,
            }
        )
        return self.write_event(
            EventKind.SPAN,
            data,
            session_id=session_id,
            component="span-manager",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id or trace_id,
            parent_span_id=parent_span_id,
        )

    def write_session_start(
        self,
        session_id: str,
        *,
        agent: str | None = None,
        model: str | None = None,
        directory: str | None = None,
        parent_session_id: str | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        data = _compact(
            {
                "session_id": session_id,
                "agent": agent,
                "model": model,
                "directory": directory,
                "parent_session_id": parent_session_id,
            }
        )
        return self.write_event(
            EventKind.SESSION_START,
            data,
            session_id=session_id,
            actor=agent,
            component="session-manager",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_session_end(
        self,
        session_id: str,
        *,
        duration_ms: float | None = None,
        message_count: int | None = None,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        data = _compact(
            {
                "session_id": session_id,
                "duration_ms": duration_ms,
                "message_count": message_count,
            }
        )
        return self.write_event(
            EventKind.SESSION_END,
            data,
            session_id=session_id,
            component="session-manager",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    def write_session_summary(
        self,
        session_id: str,
        summary: str,
        *,
        tags: list[str] | None = None,
        parent_event_id: str | None = None,
        parent_trace_id: str | None = None,
        parent_span_id: str | None = None,
    ) -> str:
        return self.write_event(
            EventKind.SESSION_SUMMARY,
            {"session_id": session_id, "summary": summary},
            session_id=session_id,
            component="session-manager",
            tags=tags,
            parent_event_id=parent_event_id,
            parent_trace_id=parent_trace_id,
            parent_span_id=parent_span_id,
        )

    # ── Queries ───────────────────────────────────────────────────────

    def query_events(self, query: EventQuery | None = None, **filters: Any) -> list[Event]:
        """Return events matching an EventQuery or keyword filters.

        Keyword filters are the EventQuery fields (kind, session_id,
        machine_id, start_ts, end_ts, limit, offset, ...).
        """
        if query is not None and filters:
            raise TypeError("Pass either an EventQuery or keyword filters, not both")
        return self.store.query(query or EventQuery(**filters))

    def get_event(self, event_id: str) -> Event | None:
        return self.store.get(event_id)
