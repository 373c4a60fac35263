"""Tests for machine identity resolution and persistence."""

from __future__ import annotations

import os
import re
from pathlib import Path

import pytest

from constellation_observability.errors import IdentityError
from constellation_observability.identity import (
    MACHINE_ID_FILENAME,
    generate_machine_id,
    resolve_machine_id,
)

MACHINE_ID_PATTERN = re.compile(r"^constellation-[0-9a-f]{6}$")


class TestGenerateMachineId:
    def test_format(self) -> None:
        assert MACHINE_ID_PATTERN.match(generate_machine_id())

    def test_random_suffix(self) -> None:
        assert len({generate_machine_id() for _ in range(20)}) > 1


class TestResolveMachineId:
    def test_generates_and_persists(self, tmp_path: Path) -> None:
        machine_id = resolve_machine_id(tmp_path / "data", environ={})

        assert MACHINE_ID_PATTERN.match(machine_id)
        stored = (tmp_path / "data" / MACHINE_ID_FILENAME).read_text(encoding="utf-8")
        assert stored == machine_id

    def test_stable_across_calls(self, tmp_path: Path) -> None:
        first = resolve_machine_id(tmp_path, environ={})
        second = resolve_machine_id(tmp_path, environ={})
        assert first == second

    def test_deleting_file_yields_new_id(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        suffixes = iter(["aaaaaa", "bbbbbb"])
        monkeypatch.setattr(
            "constellation_observability.identity.secrets.token_hex",
            lambda n: next(suffixes),
        )

        first = resolve_machine_id(tmp_path, environ={})
        (tmp_path / MACHINE_ID_FILENAME).unlink()
        second = resolve_machine_id(tmp_path, environ={})

        assert first == "constellation-aaaaaa"
        assert second == "constellation-bbbbbb"

    def test_reads_existing_file_trimmed(self, tmp_path: Path) -> None:
        (tmp_path / MACHINE_ID_FILENAME).write_text("  ci-runner-7\n", encoding="utf-8")
        assert resolve_machine_id(tmp_path, environ={}) == "ci-runner-7"

    def test_empty_file_is_regenerated(self, tmp_path: Path) -> None:
        (tmp_path / MACHINE_ID_FILENAME).write_text("\n", encoding="utf-8")
        machine_id = resolve_machine_id(tmp_path, environ={})
        assert MACHINE_ID_PATTERN.match(machine_id)
        assert (tmp_path / MACHINE_ID_FILENAME).read_text(encoding="utf-8") == machine_id

    def test_env_override_wins_and_is_not_persisted(self, tmp_path: Path) -> None:
        (tmp_path / MACHINE_ID_FILENAME).write_text("persisted-id", encoding="utf-8")

        machine_id = resolve_machine_id(tmp_path, environ={"MACHINE_ID": "env-host"})

        assert machine_id == "env-host"
        assert (tmp_path / MACHINE_ID_FILENAME).read_text(encoding="utf-8") == "persisted-id"

    def test_env_override_does_not_create_file(self, tmp_path: Path) -> None:
        resolve_machine_id(tmp_path / "fresh", environ={"MACHINE_ID": "env-host"})
        assert not (tmp_path / "fresh").exists()

    def test_process_environment_used_by_default(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MACHINE_ID", "from-os-environ")
        assert resolve_machine_id(tmp_path) == "from-os-environ"

    def test_explicit_override_beats_env(self, tmp_path: Path) -> None:
        machine_id = resolve_machine_id(
            tmp_path, override="configured", environ={"MACHINE_ID": "env-host"}
        )
        assert machine_id == "configured"

    def test_blank_override_ignored(self, tmp_path: Path) -> None:
        machine_id = resolve_machine_id(tmp_path, override="  ", environ={"MACHINE_ID": ""})
        assert MACHINE_ID_PATTERN.match(machine_id)

    def test_unwritable_directory_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail_replace(src: str, dst: object) -> None:
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(os, "replace", fail_replace)

        with pytest.raises(IdentityError, match="Cannot persist machine id"):
            resolve_machine_id(tmp_path, environ={})

        # Temp file cleaned up, no identity file left behind
        assert list(tmp_path.iterdir()) == []
