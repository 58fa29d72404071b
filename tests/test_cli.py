"""Tests de la CLI."""

from unittest.mock import AsyncMock

import pytest

from conftest import make_sample
from vitals_monitor import cli
from vitals_monitor.monitoring import ClassroomMonitor
from vitals_monitor.vitals import RosterEntry, RosterFetchError


class TestFormatTable:

    def test_rows_sorted_by_name(self, manager, scheduler):
        monitor = ClassroomMonitor(manager)
        monitor.set_classroom("CLS-42", [
            RosterEntry("STU-002", "Luis", "Gómez"),
            RosterEntry("STU-001", "Ana", "Pérez"),
        ])
        monitor.reducer.on_sample(make_sample("STU-001", heart_rate=92.4))
        scheduler.advance(0.5)

        lines = cli.format_table(monitor).splitlines()

        assert lines[0].startswith("STUDENT")
        assert lines[1].startswith("Ana Pérez")
        assert "excellent" in lines[1].lower()
        assert "92" in lines[1] and "just now" in lines[1]
        assert lines[2].startswith("Luis Gómez")
        assert lines[2].endswith("never")


class TestMain:

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.main([])

    def test_roster_failure_exit_code(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VITALS_ENV_FILE", str(tmp_path / "missing.env"))
        monkeypatch.setattr(
            cli.RosterClient,
            "fetch_students",
            AsyncMock(side_effect=RosterFetchError("CLS-42", "HTTP 404")),
        )

        assert cli.main(["watch", "--classroom", "CLS-42"]) == 1
