from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from constellation_observability.emit import Observability
from constellation_observability.runtime import reset_observability
from constellation_observability.store import EventStore


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    # Keep host overrides and the process-wide instance out of every test.
    monkeypatch.delenv("MACHINE_ID", raising=False)
    monkeypatch.delenv("CONSTELLATION_DATA_DIR", raising=False)
    monkeypatch.chdir(tmp_path)
    reset_observability()
    yield
    reset_observability()


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture()
def obs(data_dir: Path) -> Iterator[Observability]:
    handle = Observability(data_dir)
    yield handle
    handle.close()


@pytest.fixture()
def store(data_dir: Path) -> Iterator[EventStore]:
    handle = EventStore.initialize(data_dir)
    yield handle
    handle.close()
