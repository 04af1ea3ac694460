"""Tests for the qbank CLI queue commands."""

import asyncio

import pytest
from typer.testing import CliRunner

from qbank.cli import app
from qbank.processor.task import Task

runner = CliRunner()


@pytest.fixture(autouse=True)
def sqlite_store(store, monkeypatch):
    monkeypatch.setattr("qbank.cli.queue.QueueStore", lambda: store)
    return store


class TestSubmit:
    def test_submit_text(self, sqlite_store) -> None:
        result = runner.invoke(app, ["submit", "1. closures?", "--source", "cli", "--metadata", '{"b": 1}'])

        assert result.exit_code == 0, result.output
        assert "Task queued" in result.output
        entry = asyncio.run(sqlite_store.claim_ready())
        task = Task.from_payload(entry.payload)
        assert (task.raw_questions, task.source, task.metadata) == ("1. closures?", "cli", {"b": 1})

    def test_submit_file(self, sqlite_store, tmp_path) -> None:
        path = tmp_path / "questions.txt"
        path.write_text("1. monads?\n2. functors?", encoding="utf-8")

        result = runner.invoke(app, ["submit", "--file", str(path)])

        assert result.exit_code == 0, result.output
        entry = asyncio.run(sqlite_store.claim_ready())
        assert Task.from_payload(entry.payload).raw_questions == "1. monads?\n2. functors?"

    def test_submit_nothing(self) -> None:
        assert runner.invoke(app, ["submit"]).exit_code == 2

    def test_metadata_must_be_object(self) -> None:
        assert runner.invoke(app, ["submit", "q", "--metadata", "[1]"]).exit_code != 0


class TestInspection:
    def test_stats(self) -> None:
        runner.invoke(app, ["submit", "q"])
        result = runner.invoke(app, ["stats"])
        assert result.exit_code == 0, result.output
        assert "ready" in result.output
        assert "total" in result.output

    def test_exhausted_empty(self) -> None:
        result = runner.invoke(app, ["exhausted"])
        assert result.exit_code == 0, result.output
        assert "No exhausted entries" in result.output

    def test_reclaim(self) -> None:
        result = runner.invoke(app, ["reclaim", "--timeout", "600"])
        assert result.exit_code == 0, result.output
        assert "Reclaimed 0 stuck entries" in result.output
