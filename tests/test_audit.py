"""
Tests for the per-run audit log.
"""
from __future__ import annotations

import json
import re
from datetime import datetime

import pytest

from lifecycle_provisioning.audit import AuditLog
from lifecycle_provisioning.models import LogLevel

LINE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] \[(INFO|WARN|ERROR|SUCCESS)\] .+$")


class TestAuditLog:
    @pytest.fixture
    def clock(self):
        return lambda: datetime(2026, 1, 1, 9, 30, 0)

    def test_path_naming(self, tmp_path, clock):
        audit = AuditLog(tmp_path, "offboarding", "asmith", console=False, clock=clock)

        assert audit.path == tmp_path / "offboarding_asmith_20260101_093000.log"

    def test_lines_are_timestamped_and_leveled(self, tmp_path):
        with AuditLog(tmp_path, "onboarding", "jsmith", console=False) as audit:
            audit.info("Starting %s", "jsmith")
            audit.warn("Could not add %s", "VPN Users")
            audit.error("Aborting")
            audit.success("Done")

        lines = audit.path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 4
        assert all(LINE.match(line) for line in lines)
        assert [LINE.match(line).group(1) for line in lines] == ["INFO", "WARN", "ERROR", "SUCCESS"]
        assert lines[1].endswith("Could not add VPN Users")

    def test_entries_kept_in_memory(self, tmp_path):
        with AuditLog(tmp_path, "onboarding", "jsmith", console=False) as audit:
            audit.info("one")
            audit.warn("two")

        assert [entry.level for entry in audit.entries] == [LogLevel.INFO, LogLevel.WARN]
        assert audit.entries_at(LogLevel.WARN)[0].message == "two"

    def test_console_mirror(self, tmp_path, capsys):
        with AuditLog(tmp_path, "onboarding", "jsmith") as audit:
            audit.success("Created account %s", "jsmith")

        assert "[SUCCESS] Created account jsmith" in capsys.readouterr().out

    def test_closed_on_exception(self, tmp_path):
        with pytest.raises(RuntimeError):
            with AuditLog(tmp_path, "onboarding", "jsmith", console=False) as audit:
                raise RuntimeError("boom")

        assert audit.closed
        assert "[ERROR] Run terminated: boom" in audit.path.read_text(encoding="utf-8")

    def test_separate_runs_do_not_share_handlers(self, tmp_path):
        first = AuditLog(tmp_path, "onboarding", "alee", console=False)
        second = AuditLog(tmp_path, "onboarding", "bjones", console=False)
        with first, second:
            first.info("first only")
            second.info("second only")

        assert "second only" not in first.path.read_text(encoding="utf-8")
        assert "first only" not in second.path.read_text(encoding="utf-8")

    def test_write_artifact(self, tmp_path, clock):
        audit = AuditLog(tmp_path, "offboarding", "asmith", console=False, clock=clock)

        path = audit.write_artifact("groups", {"groups": ["Sales"]})

        assert path == tmp_path / "groups_asmith_20260101_093000.json"
        assert json.loads(path.read_text(encoding="utf-8")) == {"groups": ["Sales"]}

    def test_same_subject_in_same_second_gets_new_file(self, tmp_path, clock):
        with AuditLog(tmp_path, "onboarding", "jsmith", console=False, clock=clock) as first:
            first.info("first run")
        with AuditLog(tmp_path, "onboarding", "jsmith", console=False, clock=clock) as second:
            second.info("second run")

        assert first.path == tmp_path / "onboarding_jsmith_20260101_093000.log"
        assert second.path == tmp_path / "onboarding_jsmith_20260101_093000_2.log"
        assert "second run" not in first.path.read_text(encoding="utf-8")
        assert second.write_artifact("groups", []).name == "groups_jsmith_20260101_093000_2.json"
