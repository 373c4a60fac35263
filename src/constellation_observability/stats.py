"""Aggregation helpers over queried events.

- ``metric_summary``: count/sum/min/max/mean of metric events per group
- ``causal_chain``: follow ``parent.event_id`` links back to the root
- ``caused_by``: events that name a given event as their parent
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from .models import Event, EventKind
from .query import EventQuery
from .store import EventStore

logger = logging.getLogger(__name__)

GROUP_BY_CHOICES = ("metric", "session", "unit")


@dataclass
class MetricSummary:
    """Aggregated values for a group of metric events."""

    group_key: str
    group_by: str
    unit: str
    count: int
    total: float
    minimum: float
    maximum: float

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "group_key": self.group_key,
            "group_by": self.group_by,
            "unit": self.unit,
            "count": self.count,
            "total": round(self.total, 6),
            "min": self.minimum,
            "max": self.maximum,
            "mean": round(self.mean, 6),
        }


def metric_summary(events: Iterable[Event], group_by: str = "metric") -> list[MetricSummary]:
    """
    Aggregate metric events, grouped by the specified key.

    Args:
        events: Events as returned by a query; non-metric kinds are ignored
        group_by: "metric" (metric_name), "session", or "unit"

    Returns:
        List of MetricSummary objects sorted by group key

    Notes:
        - Events without a numeric value are skipped with a warning
        - A group mixing units reports the unit as "mixed"
    """
    if group_by not in GROUP_BY_CHOICES:
        raise ValueError(f"Invalid group_by: {group_by}")

    groups: dict[str, MetricSummary] = {}

    for event in events:
        if event.kind != EventKind.METRIC:
            continue

        payload = event.data
        value = payload.get("value")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning("Skipping metric event %s without numeric value", event.event_id)
            continue

        unit = str(payload.get("unit", "unknown"))
        if group_by == "metric":
            key = str(payload.get("metric_name", "unknown"))
        elif group_by == "session":
            key = event.context.session_id or payload.get("context_session_id") or "none"
        else:
            key = unit

        summary = groups.get(key)
        if summary is None:
            groups[key] = MetricSummary(
                group_key=key,
                group_by=group_by,
                unit=unit,
                count=1,
                total=float(value),
                minimum=value,
                maximum=value,
            )
            continue

        summary.count += 1
        summary.total += value
        summary.minimum = min(summary.minimum, value)
        summary.maximum = max(summary.maximum, value)
        if summary.unit != unit:
            summary.unit = "mixed"

    return sorted(groups.values(), key=lambda s: s.group_key)


def causal_chain(store: EventStore, event_id: str, max_depth: int = 100) -> list[Event]:
    """Return the event and its ancestors, starting with the event itself.

    Stops at the first event without a parent, at a parent id that is not
    in the store, or after *max_depth* hops (guards against cycles created
    by hand-written parent ids).
    """
    chain: list[Event] = []
    seen: set[str] = set()
    current: str | None = event_id

    while current is not None and len(chain) < max_depth:
        if current in seen:
            logger.warning("Cycle in causal chain at %s", current)
            break
        seen.add(current)
        event = store.get(current)
        if event is None:
            if chain:
                logger.debug("Parent %s not found; chain ends", current)
            break
        chain.append(event)
        current = event.parent.event_id

    return chain


def caused_by(store: EventStore, event_id: str) -> list[Event]:
    """Events whose ``parent.event_id`` is *event_id*, most recent first."""
    return store.query(EventQuery(parent_event_id=event_id))
