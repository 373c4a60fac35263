"""Exception hierarchy for the observability event store."""

from __future__ import annotations

from typing import List


class ObservabilityError(Exception):
    """Base exception for observability errors."""
    pass


class ConfigError(ObservabilityError):
    """Raised when observability configuration is invalid."""


class IdentityError(ObservabilityError):
    """Raised when the machine identity cannot be resolved or persisted."""


class PayloadValidationError(ObservabilityError, ValueError):
    """Event data does not satisfy the contract of its kind.

    Raised by the writers before anything touches storage, so a rejected
    event leaves no row behind.
    """

    def __init__(
        self,
        kind: str,
        problems: List[str],
        message: str | None = None,
    ):
        """Initialize PayloadValidationError.

        Args:
            kind: Event kind whose contract was violated
            problems: Human-readable description of each violation
            message: Optional custom message (defaults to a summary)
        """
        self.kind = kind
        self.problems = problems

        if message:
            super().__init__(message)
        else:
            detail = "; ".join(problems) if problems else "invalid payload"
            super().__init__(f"Invalid data for event kind '{kind}': {detail}")


class StoreError(ObservabilityError):
    """Raised when the event store encounters corruption or I/O errors."""


class DuplicateEventError(StoreError):
    """An event with the same event_id is already persisted."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} already exists in the store")


class StoreClosedError(StoreError):
    """The store handle was used after close()."""

    def __init__(self, db_path: object | None = None):
        self.db_path = db_path
        where = f" ({db_path})" if db_path is not None else ""
        super().__init__(f"Event store is closed{where}")
