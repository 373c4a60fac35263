"""Process-wide Observability accessor.

Components that cannot be handed an ``Observability`` explicitly can reach
the shared instance through this module. The instance is created on first
use and closed on process exit via an atexit handler.

Usage:
    from constellation_observability.runtime import initialize_observability

    obs = initialize_observability("data")   # at process start
    ...
    obs = get_observability()                # anywhere later
"""

from __future__ import annotations

import atexit
import logging
import threading
from pathlib import Path

from .config import ObservabilityConfig
from .emit import Observability

logger = logging.getLogger(__name__)

_instance: Observability | None = None
_lock = threading.Lock()


def initialize_observability(
    data_dir: Path | str | None = None,
    *,
    config: ObservabilityConfig | None = None,
) -> Observability:
    """Create the shared instance, or return the existing one (idempotent).

    Args:
        data_dir: Data directory; overrides the configured one.
        config: Settings to use; loaded from file/environment when None.
    """
    global _instance
    with _lock:
        if _instance is not None:
            if data_dir is not None and Path(data_dir).resolve() != _instance.data_dir:
                logger.warning(
                    "Observability already initialized at %s; ignoring %s",
                    _instance.data_dir,
                    data_dir,
                )
            return _instance

        resolved = config or ObservabilityConfig.load()
        if data_dir is not None:
            resolved = ObservabilityConfig(
                data_dir=Path(data_dir),
                machine_id=resolved.machine_id,
                record_hostname=resolved.record_hostname,
                source_version=resolved.source_version,
                validate_payloads=resolved.validate_payloads,
            )
        _instance = Observability.from_config(resolved)
        return _instance


def get_observability() -> Observability:
    """Get or create the shared Observability instance.

    Created with file/environment configuration on first access.
    """
    return initialize_observability()


def reset_observability() -> None:
    """Close and forget the shared instance (tests, shutdown)."""
    global _instance
    with _lock:
        if _instance is not None:
            _instance.close()
        _instance = None


atexit.register(reset_observability)
