"""Observability configuration management.

Settings come from the ``[observability]`` table of a TOML file
(default ``.constellation/config.toml`` under the working directory),
then environment overrides:

- ``CONSTELLATION_DATA_DIR`` replaces ``data_dir``
- ``MACHINE_ID`` replaces ``machine_id``
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import toml  # type: ignore[import-untyped]

from .errors import ConfigError
from .identity import MACHINE_ID_ENV_VAR

DEFAULT_DATA_DIR = "data"
DATA_DIR_ENV_VAR = "CONSTELLATION_DATA_DIR"
CONFIG_SECTION = "observability"


def default_config_path() -> Path:
    return Path.cwd() / ".constellation" / "config.toml"


@dataclass(frozen=True)
class ObservabilityConfig:
    """Resolved settings for one Observability handle."""

    data_dir: Path = Path(DEFAULT_DATA_DIR)
    machine_id: str | None = None
    record_hostname: bool = True
    source_version: str | None = None
    validate_payloads: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ObservabilityConfig:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError(f"[{CONFIG_SECTION}] must be a table")

        data_dir = data.get("data_dir", DEFAULT_DATA_DIR)
        if not isinstance(data_dir, str) or not data_dir.strip():
            raise ConfigError("data_dir must be a non-empty string")

        machine_id = data.get("machine_id")
        if machine_id is not None and not isinstance(machine_id, str):
            raise ConfigError("machine_id must be a string")

        source_version = data.get("source_version")
        if source_version is not None and not isinstance(source_version, str):
            raise ConfigError("source_version must be a string")

        flags: dict[str, bool] = {}
        for key in ("record_hostname", "validate_payloads"):
            value = data.get(key, True)
            if not isinstance(value, bool):
                raise ConfigError(f"{key} must be true or false")
            flags[key] = value

        return cls(
            data_dir=Path(data_dir.strip()),
            machine_id=machine_id.strip() if machine_id and machine_id.strip() else None,
            source_version=source_version,
            **flags,
        )

    @classmethod
    def load(
        cls,
        config_file: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ObservabilityConfig:
        """Load configuration from *config_file* and the environment.

        A missing file yields defaults. An unreadable or malformed file
        raises ConfigError.
        """
        path = config_file or default_config_path()
        section: dict[str, Any] | None = None
        if path.exists():
            try:
                raw: dict[str, Any] = toml.load(path)
            except (toml.TomlDecodeError, OSError) as exc:
                raise ConfigError(f"Cannot read config {path}: {exc}") from exc
            section = raw.get(CONFIG_SECTION)

        config = cls.from_dict(section)
        return config.with_env(os.environ if environ is None else environ)

    def with_env(self, environ: Mapping[str, str]) -> ObservabilityConfig:
        """Return a copy with environment overrides applied."""
        data_dir = self.data_dir
        env_dir = environ.get(DATA_DIR_ENV_VAR, "").strip()
        if env_dir:
            data_dir = Path(env_dir)

        machine_id = self.machine_id
        env_machine = environ.get(MACHINE_ID_ENV_VAR, "").strip()
        if env_machine:
            machine_id = env_machine

        return ObservabilityConfig(
            data_dir=data_dir,
            machine_id=machine_id,
            record_hostname=self.record_hostname,
            source_version=self.source_version,
            validate_payloads=self.validate_payloads,
        )
