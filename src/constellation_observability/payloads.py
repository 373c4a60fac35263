"""Per-kind payload contracts for event ``data``.

Each event kind with a fixed contract has one pydantic model here; together
they form a tagged union keyed by ``kind`` (see ``PAYLOAD_MODELS``).

Kinds:
- constellation:tool_execute, hook_fired, agent_spawned, skill_loaded,
  command_executed, plugin_event
- error, metric, log, span
- session_start, session_end, session_summary

Models accept extra fields so ``data`` stays an open map; only the
documented fields are checked.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import PayloadValidationError
from .models import EventKind, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

ToolPhase = Literal["before", "after"]
SpanStatus = Literal["started", "completed", "failed"]
AgentMode = Literal["subagent", "primary"]
LogLevel = Literal["debug", "info", "warning", "error", "critical"]

Number = Union[int, float]
Duration = Union[NonNegativeInt, NonNegativeFloat]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow")


# ── Constellation component payloads ──────────────────────────────────


class ToolExecutePayload(_Payload):
    """Tool invocation, recorded once before and once after execution.

    ``result`` and ``duration_ms`` only exist on the ``after`` record.
    """

    tool_name: str = Field(..., min_length=1, description="Tool identifier")
    args: dict[str, Any] = Field(..., description="Arguments passed to the tool")
    context_session_id: str = Field(..., min_length=1, description="Session the tool ran in")
    phase: ToolPhase = Field(..., description="'before' or 'after'")
    context_agent: Optional[str] = Field(None, description="Agent that invoked the tool")
    result: Optional[Any] = Field(None, description="Tool result (after only)")
    duration_ms: Optional[Duration] = Field(None, description="Execution time (after only)")
    error: Optional[str] = Field(None, description="Error message if the tool failed")

    @model_validator(mode="after")
    def validate_after_only_fields(self) -> "ToolExecutePayload":
        """Reject after-only fields on a 'before' record."""
        if self.phase == "before":
            present = [name for name in ("result", "duration_ms") if name in self.model_fields_set]
            if present:
                raise ValueError(
                    f"{', '.join(present)} only allowed when phase is 'after'"
                )
        return self


class HookFiredPayload(_Payload):
    """Plugin hook invocation."""

    hook_name: str = Field(..., min_length=1, description="Hook identifier")
    plugin_name: str = Field(..., min_length=1, description="Plugin owning the hook")
    context_session_id: str = Field(..., min_length=1, description="Session the hook fired in")
    event_payload: Optional[dict[str, Any]] = Field(None, description="Payload handed to the hook")
    duration_ms: Optional[Duration] = Field(None, description="Hook execution time")


class AgentSpawnedPayload(_Payload):
    """Sub-agent (or primary agent) creation."""

    agent_name: str = Field(..., min_length=1, description="Agent persona name")
    parent_session_id: str = Field(..., min_length=1, description="Spawning session")
    child_session_id: str = Field(..., min_length=1, description="Session of the new agent")
    agent_mode: AgentMode = Field(..., description="'subagent' or 'primary'")
    model: Optional[str] = Field(None, description="LLM model identifier")
    tools_enabled: Optional[list[str]] = Field(None, description="Tools available to the agent")


class SkillLoadedPayload(_Payload):
    skill_name: str = Field(..., min_length=1, description="Skill identifier")
    skill_path: str = Field(..., min_length=1, description="Where the skill was loaded from")
    context_session_id: str = Field(..., min_length=1, description="Session that loaded it")
    context_agent: Optional[str] = Field(None, description="Agent that loaded it")


class CommandExecutedPayload(_Payload):
    command_name: str = Field(..., min_length=1, description="Command identifier")
    context_session_id: str = Field(..., min_length=1, description="Session that ran it")
    args: Optional[list[str]] = Field(None, description="Command arguments")
    duration_ms: Optional[Duration] = Field(None, description="Execution time")
    result: Optional[str] = Field(None, description="Command output summary")


class PluginEventPayload(_Payload):
    plugin_name: str = Field(..., min_length=1, description="Plugin identifier")
    event_type: str = Field(..., min_length=1, description="Plugin-defined event type")
    context_session_id: Optional[str] = Field(None, description="Session, if any")
    event_data: Optional[dict[str, Any]] = Field(None, description="Plugin-defined data")


# ── Standard kind payloads ────────────────────────────────────────────


class ErrorPayload(_Payload):
    """Structured error record.

    ``retryable`` and ``transient`` are always present so consumers can
    decide on recovery without guessing defaults.
    """

    error_type: str = Field(..., min_length=1, description="Error classification")
    message: str = Field(..., description="Human-readable error message")
    context_session_id: str = Field(..., min_length=1, description="Session the error occurred in")
    retryable: bool = Field(..., description="True if the operation may be retried")
    transient: bool = Field(..., description="True if the failure is expected to clear")
    error_code: Optional[str] = Field(None, description="Machine-readable error code")
    tool_name: Optional[str] = Field(None, description="Tool involved, if any")
    invariants_violated: Optional[list[str]] = Field(None, description="Broken invariants")
    raw_output: Optional[str] = Field(None, description="Raw output captured at failure")
    recovery_actions: Optional[list[str]] = Field(None, description="Suggested next steps")


class MetricPayload(_Payload):
    metric_name: str = Field(..., min_length=1, description="Metric identifier")
    value: Number = Field(..., description="Observed value")
    unit: str = Field(..., min_length=1, description="Unit of measure (ms, tokens, count...)")
    context_session_id: Optional[str] = Field(None, description="Session, if any")
    dimensions: Optional[dict[str, Any]] = Field(None, description="Free-form breakdown labels")

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v: Any) -> Any:
        """Booleans are ints to pydantic; a metric value must be numeric."""
        if isinstance(v, bool):
            raise ValueError("Metric value must be a number, not a boolean")
        return v


class LogPayload(_Payload):
    level: LogLevel = Field(..., description="Severity")
    message: str = Field(..., description="Log message")
    context_session_id: Optional[str] = Field(None, description="Session, if any")
    logger_name: Optional[str] = Field(None, description="Originating logger")
    fields: Optional[dict[str, Any]] = Field(None, description="Structured context")


class SpanPayload(_Payload):
    """Named unit of work with a lifecycle status."""

    span_id: str = Field(..., min_length=1, description="Span identifier")
    name: str = Field(..., min_length=1, description="Span name")
    status: SpanStatus = Field(..., description="'started' | 'completed' | 'failed'")
    start_ts: str = Field(..., description="ISO 8601 UTC start time")
    parent_span_id: Optional[str] = Field(None, description="Enclosing span")
    trace_id: Optional[str] = Field(None, description="Trace the span belongs to")
    end_ts: Optional[str] = Field(None, description="ISO 8601 UTC end time")
    duration_ms: Optional[Duration] = Field(None, description="Span duration")
    context_session_id: Optional[str] = Field(None, description="Session, if any")

    @field_validator("start_ts", "end_ts", mode="before")
    @classmethod
    def validate_timestamp(cls, v: Any) -> Any:
        """Accept datetimes and ISO strings; store the canonical string form."""
        if v is None:
            return v
        if isinstance(v, datetime):
            return format_timestamp(v)
        if isinstance(v, str):
            try:
                return format_timestamp(parse_timestamp(v))
            except ValueError:
                raise ValueError(f"Invalid ISO 8601 timestamp: {v}") from None
        return v


class SessionPayload(_Payload):
    """Session lifecycle record (start, end, summary)."""

    session_id: str = Field(..., min_length=1, description="Session identifier")
    agent: Optional[str] = Field(None, description="Primary agent of the session")
    model: Optional[str] = Field(None, description="LLM model identifier")
    directory: Optional[str] = Field(None, description="Working directory")
    parent_session_id: Optional[str] = Field(None, description="Spawning session, if any")
    duration_ms: Optional[Duration] = Field(None, description="Session duration")
    message_count: Optional[int] = Field(None, ge=0, description="Messages exchanged")
    summary: Optional[str] = Field(None, description="Session summary text")


PAYLOAD_MODELS: dict[str, type[_Payload]] = {
    EventKind.TOOL_EXECUTE: ToolExecutePayload,
    EventKind.HOOK_FIRED: HookFiredPayload,
    EventKind.AGENT_SPAWNED: AgentSpawnedPayload,
    EventKind.SKILL_LOADED: SkillLoadedPayload,
    EventKind.COMMAND_EXECUTED: CommandExecutedPayload,
    EventKind.PLUGIN_EVENT: PluginEventPayload,
    EventKind.ERROR: ErrorPayload,
    EventKind.METRIC: MetricPayload,
    EventKind.LOG: LogPayload,
    EventKind.SPAN: SpanPayload,
    EventKind.SESSION_START: SessionPayload,
    EventKind.SESSION_END: SessionPayload,
    EventKind.SESSION_SUMMARY: SessionPayload,
}


def _format_errors(exc: ValidationError) -> list[str]:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        problems.append(f"{loc}: {msg}" if loc else msg)
    return problems


def validate_payload(kind: str, data: dict[str, Any]) -> dict[str, Any]:
    """Check *data* against the contract for *kind*.

    Returns the normalized payload. Optional fields the caller never set
    are omitted; explicit ``None`` values are kept.
    Kinds without a registered contract are returned unchanged.

    Raises:
        PayloadValidationError: If a required field is missing or a value
            does not match the contract.
    """
    model_cls = PAYLOAD_MODELS.get(kind)
    if model_cls is None:
        return dict(data)
    try:
        model = model_cls.model_validate(data)
    except ValidationError as exc:
        problems = _format_errors(exc)
        logger.warning("Rejected %s event: %s", kind, "; ".join(problems))
        raise PayloadValidationError(kind, problems) from exc
    return model.model_dump(exclude_unset=True)


def parse_payload(kind: str, data: dict[str, Any]) -> _Payload | None:
    """Return the typed payload for a stored event, or None for open kinds.

    Raises:
        PayloadValidationError: If stored data no longer satisfies the
            contract (written with validation disabled).
    """
    model_cls = PAYLOAD_MODELS.get(kind)
    if model_cls is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        raise PayloadValidationError(kind, _format_errors(exc)) from exc
