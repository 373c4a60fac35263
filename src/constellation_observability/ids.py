"""ULID generation for event IDs.

ULID format: TTTTTTTTTTRRRRRRRRRRRRRRRR
- First 10 chars: Timestamp (Crockford base32 milliseconds)
- Last 16 chars: Random component (80 bits)

Plain ULIDs only sort by millisecond; two IDs minted in the same
millisecond compare in random order. ``EventIdGenerator`` adds the ULID
monotonic rule on top of ``python-ulid`` so IDs from one generator are
strictly increasing in call order.
"""

from __future__ import annotations

import re
import threading

from ulid import ULID

ULID_PATTERN = re.compile(r"^[0-9A-HJKMNP-TV-Z]{26}$")

_MAX_ULID = (1 << 128) - 1


class EventIdGenerator:
    """Thread-safe monotonic ULID source.

    When a fresh ULID does not sort after the previous one (same
    millisecond, or the wall clock stepped backwards) the previous value
    is incremented by one instead.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last: int | None = None

    def next(self) -> str:
        """Return the next event ID (26 uppercase Crockford chars)."""
        with self._lock:
            candidate = int(ULID())
            if self._last is not None and candidate <= self._last:
                if self._last >= _MAX_ULID:
                    raise OverflowError("ULID space exhausted")
                candidate = self._last + 1
            self._last = candidate
            return str(ULID.from_int(candidate))


_default_generator = EventIdGenerator()


def generate_event_id() -> str:
    """Generate an event ID from the process-wide generator."""
    return _default_generator.next()


def is_event_id(value: object) -> bool:
    """Return True when *value* looks like a canonical ULID string."""
    return isinstance(value, str) and bool(ULID_PATTERN.match(value))
