"""Machine identity for an observability data directory.

The identity is a short readable string (``constellation-1a2b3c``) created
once per data directory and persisted in ``<data_dir>/.machine_id``.
"""

from __future__ import annotations

import logging
import os
import secrets
import socket
import tempfile
from pathlib import Path
from typing import Mapping

from .errors import IdentityError

logger = logging.getLogger(__name__)

MACHINE_ID_ENV_VAR = "MACHINE_ID"
MACHINE_ID_FILENAME = ".machine_id"
MACHINE_ID_PREFIX = "constellation"


def generate_machine_id() -> str:
    """Generate a fresh machine identifier.

    Returns ``constellation-`` followed by 6 lowercase hex characters.
    """
    return f"{MACHINE_ID_PREFIX}-{secrets.token_hex(3)}"


def machine_id_path(data_dir: Path) -> Path:
    return Path(data_dir) / MACHINE_ID_FILENAME


def resolve_hostname() -> str | None:
    """Return the local hostname, or None when it cannot be determined."""
    try:
        hostname = socket.gethostname()
    except OSError:
        return None
    return hostname or None


def _write_machine_id(path: Path, machine_id: str) -> None:
    """Persist *machine_id* using atomic write (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(machine_id)
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def resolve_machine_id(
    data_dir: Path,
    *,
    override: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Resolve the machine identity for *data_dir*.

    Resolution order:
    1. *override* argument, then the ``MACHINE_ID`` environment variable
       (used as-is, never persisted)
    2. ``<data_dir>/.machine_id`` if present and non-empty
    3. A newly generated id, written to ``<data_dir>/.machine_id``

    Args:
        data_dir: Observability data directory.
        override: Explicit identity from configuration.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        The machine identity string.

    Raises:
        IdentityError: If the identity file cannot be read or written.
    """
    env = os.environ if environ is None else environ
    for candidate in (override, env.get(MACHINE_ID_ENV_VAR)):
        if candidate and candidate.strip():
            logger.debug("Using machine id override")
            return candidate.strip()

    path = machine_id_path(data_dir)
    if path.exists():
        try:
            stored = path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise IdentityError(f"Cannot read machine id file {path}: {exc}") from exc
        if stored:
            logger.debug("Loaded machine id from %s", path)
            return stored
        logger.warning("Machine id file %s is empty; generating a new id", path)

    machine_id = generate_machine_id()
    try:
        _write_machine_id(path, machine_id)
    except OSError as exc:
        raise IdentityError(f"Cannot persist machine id to {path}: {exc}") from exc

    logger.info("Generated machine id %s in %s", machine_id, path)
    return machine_id
