"""Local structured event telemetry for the constellation shell.

Provides SQLite-backed event storage, per-kind payload contracts, a
monotonic ULID source, machine identity, and a filtered query layer for
tool, hook, agent, skill, command, plugin, error, metric, span and
session events.
"""

from constellation_observability.config import ObservabilityConfig
from constellation_observability.emit import Observability
from constellation_observability.errors import (
    ConfigError,
    DuplicateEventError,
    IdentityError,
    ObservabilityError,
    PayloadValidationError,
    StoreClosedError,
    StoreError,
)
from constellation_observability.identity import resolve_machine_id
from constellation_observability.ids import EventIdGenerator, generate_event_id
from constellation_observability.models import Event, EventKind
from constellation_observability.query import EventQuery
from constellation_observability.runtime import (
    get_observability,
    initialize_observability,
    reset_observability,
)
from constellation_observability.store import EventStore

__all__ = [
    "Observability",
    "ObservabilityConfig",
    "Event",
    "EventKind",
    "EventQuery",
    "EventStore",
    "EventIdGenerator",
    "generate_event_id",
    "resolve_machine_id",
    "initialize_observability",
    "get_observability",
    "reset_observability",
    "ObservabilityError",
    "ConfigError",
    "IdentityError",
    "PayloadValidationError",
    "StoreError",
    "DuplicateEventError",
    "StoreClosedError",
]
