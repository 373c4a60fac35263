"""CLI tests for the constellation-obs inspection commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from constellation_observability.cli import app
from constellation_observability.emit import Observability

runner = CliRunner()


@pytest.fixture
def seeded(data_dir: Path) -> dict[str, str]:
    """Write a small causal story and return its event ids."""
    with Observability(data_dir, machine_id="cli-test") as obs:
        start = obs.write_session_start("S1", agent="planner")
        call = obs.write_tool_execute("db-query", {}, "before", session_id="S1", parent_event_id=start)
        done = obs.write_tool_execute(
            "db-query", {}, "after", session_id="S1", duration_ms=45, parent_event_id=call
        )
        obs.write_metric("latency", 10, "ms", session_id="S1")
        obs.write_metric("latency", 30, "ms", session_id="S2")
        obs.write_metric("tokens", 500, "tokens", session_id="S2")
    return {"start": start, "call": call, "done": done}


class TestEventsCommand:
    def test_json_listing_most_recent_first(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(app, ["events", "--data-dir", str(data_dir), "--json"])

        assert result.exit_code == 0, result.output
        events = json.loads(result.output)
        assert len(events) == 6
        assert events[-1]["event_id"] == seeded["start"]
        assert all(e["machine"]["id"] == "cli-test" for e in events)

    def test_filters(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(
            app,
            ["events", "-d", str(data_dir), "--kind", "metric", "--session", "S2", "--json"],
        )

        assert result.exit_code == 0, result.output
        events = json.loads(result.output)
        assert [e["data"]["metric_name"] for e in events] == ["tokens", "latency"]

    def test_limit_and_offset(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(
            app, ["events", "-d", str(data_dir), "--limit", "2", "--offset", "3", "--json"]
        )

        assert result.exit_code == 0, result.output
        events = json.loads(result.output)
        assert [e["event_id"] for e in events] == [seeded["done"], seeded["call"]]

    def test_table_output(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(app, ["events", "-d", str(data_dir), "--kind", "session_start"])

        assert result.exit_code == 0, result.output
        assert "Events (1)" in result.output

    def test_empty_store(self, data_dir: Path) -> None:
        result = runner.invoke(app, ["events", "-d", str(data_dir)])

        assert result.exit_code == 0
        assert "No events found" in result.output
        # Inspection never creates the database
        assert not data_dir.exists()

    def test_invalid_since(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(app, ["events", "-d", str(data_dir), "--since", "last week"])

        assert result.exit_code == 1
        assert "Invalid --since" in result.output

    def test_since_filters(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(
            app, ["events", "-d", str(data_dir), "--since", "2999-01-01T00:00:00Z", "--json"]
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == []


class TestShowCommand:
    def test_show_event(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(app, ["show", seeded["done"], "-d", str(data_dir)])

        assert result.exit_code == 0, result.output
        event = json.loads(result.output)
        assert event["event_id"] == seeded["done"]
        assert event["data"]["duration_ms"] == 45
        assert event["parent"]["event_id"] == seeded["call"]

    def test_show_missing(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(app, ["show", "01HX0000000000000000000000", "-d", str(data_dir)])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestChainCommand:
    def test_chain_json(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(app, ["chain", seeded["done"], "-d", str(data_dir), "--json"])

        assert result.exit_code == 0, result.output
        chain = json.loads(result.output)
        assert [e["event_id"] for e in chain] == [seeded["done"], seeded["call"], seeded["start"]]

    def test_chain_missing(self, data_dir: Path) -> None:
        result = runner.invoke(app, ["chain", "01HX0000000000000000000000", "-d", str(data_dir)])
        assert result.exit_code == 1


class TestMetricsCommand:
    def test_group_by_metric(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(app, ["metrics", "-d", str(data_dir), "--json"])

        assert result.exit_code == 0, result.output
        summaries = {s["group_key"]: s for s in json.loads(result.output)}
        assert summaries["latency"]["count"] == 2
        assert summaries["latency"]["mean"] == 20
        assert summaries["tokens"]["total"] == 500

    def test_group_by_session(self, data_dir: Path, seeded: dict[str, str]) -> None:
        result = runner.invoke(app, ["metrics", "-d", str(data_dir), "--group-by", "session", "--json"])

        assert result.exit_code == 0, result.output
        counts = {s["group_key"]: s["count"] for s in json.loads(result.output)}
        assert counts == {"S1": 1, "S2": 2}

    def test_invalid_group_by(self, data_dir: Path) -> None:
        result = runner.invoke(app, ["metrics", "-d", str(data_dir), "--group-by", "machine"])
        assert result.exit_code != 0

    def test_no_metrics(self, data_dir: Path) -> None:
        result = runner.invoke(app, ["metrics", "-d", str(data_dir)])

        assert result.exit_code == 0
        assert "No metric events found" in result.output


class TestMachineIdCommand:
    def test_prints_persisted_identity(self, data_dir: Path) -> None:
        first = runner.invoke(app, ["machine-id", "-d", str(data_dir)])
        second = runner.invoke(app, ["machine-id", "-d", str(data_dir)])

        assert first.exit_code == 0, first.output
        machine_id = first.output.strip()
        assert machine_id.startswith("constellation-")
        assert second.output.strip() == machine_id

    def test_env_override(self, data_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MACHINE_ID", "env-host")
        result = runner.invoke(app, ["machine-id", "-d", str(data_dir)])
        assert result.output.strip() == "env-host"
