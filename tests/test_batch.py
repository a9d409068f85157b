"""
Tests for CSV batch onboarding.
"""
from __future__ import annotations

from datetime import date, datetime
from unittest.mock import Mock

import pytest

from lifecycle_provisioning.batch import BatchRunner, parse_start_date, read_rows, record_from_row
from lifecycle_provisioning.errors import BatchInputError, InvalidRecordError
from lifecycle_provisioning.models import WorkflowStatus
from lifecycle_provisioning.onboarding import OnboardingWorkflow

HEADER = "FirstName,LastName,Department,Title,Manager,StartDate\n"


def write_csv(path, *rows):
    path.write_text(HEADER + "".join(row + "\n" for row in rows), encoding="utf-8")
    return path


class TestBatchRunner:
    @pytest.fixture
    def runner(self, app_config, template_store, directory):
        workflow = OnboardingWorkflow(app_config, template_store, directory)
        return BatchRunner(workflow, app_config.storage.logs_dir, console=False)

    def test_failed_record_does_not_stop_batch(self, runner, directory, tmp_path):
        source = write_csv(
            tmp_path / "new_hires.csv",
            "John,Smith,Engineering,Engineer,,2026-03-02",
            "Ann,Lee,Astrology,Seer,,",
            "Sam,Seller,Sales,Account Executive,,03/09/2026",
        )

        summary = runner.run_file(source)

        assert len(summary.results) == 3
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.exit_code == 0
        assert set(directory.accounts) == {"jsmith", "sseller"}
        failed = summary.results[1]
        assert failed.status is WorkflowStatus.FAILED
        assert "Astrology" in failed.error

    def test_each_record_gets_its_own_log(self, runner, tmp_path):
        source = write_csv(
            tmp_path / "new_hires.csv",
            "John,Smith,Engineering,,,",
            "Sam,Seller,Sales,,,",
        )

        summary = runner.run_file(source)

        log_paths = [result.log_path for result in summary.results]
        assert log_paths[0] != log_paths[1]
        assert log_paths[0].name.startswith("onboarding_jsmith_")
        assert log_paths[1].name.startswith("onboarding_sseller_")
        assert all(path.exists() for path in log_paths)

    def test_duplicate_names_get_separate_logs(self, app_config, template_store, directory, tmp_path):
        workflow = OnboardingWorkflow(app_config, template_store, directory)
        runner = BatchRunner(
            workflow,
            app_config.storage.logs_dir,
            console=False,
            clock=lambda: datetime(2026, 1, 1, 9, 0, 0),
        )
        source = write_csv(
            tmp_path / "twins.csv",
            "John,Smith,Engineering,,,",
            "John,Smith,Engineering,,,",
        )

        summary = runner.run_file(source)

        assert [result.username for result in summary.results] == ["jsmith", "jsmith1"]
        first, second = (result.log_path for result in summary.results)
        assert first != second
        assert first.name == "onboarding_jsmith_20260101_090000.log"
        assert second.name == "onboarding_jsmith_20260101_090000_2.log"
        assert "jsmith1" not in first.read_text(encoding="utf-8")
        assert "jsmith1" in second.read_text(encoding="utf-8")

    def test_summary_log_written(self, runner, tmp_path):
        source = write_csv(tmp_path / "spring.csv", "John,Smith,Engineering,,,")

        summary = runner.run_file(source)

        assert summary.log_path.name.startswith("batch_spring_")
        text = summary.log_path.read_text(encoding="utf-8")
        assert "1 succeeded, 0 failed" in text
        summaries = list(summary.log_path.parent.glob("batch_summary_spring_*.json"))
        assert len(summaries) == 1
        assert summary.results[0].temporary_secret not in summaries[0].read_text(encoding="utf-8")

    def test_all_failed_batch_exits_nonzero(self, runner, tmp_path):
        source = write_csv(tmp_path / "bad.csv", "Ann,Lee,Astrology,,,", "Bo,Diddly,Music,,,")

        summary = runner.run_file(source)

        assert summary.succeeded == 0
        assert summary.exit_code == 1

    def test_invalid_row_becomes_failed_result(self, runner, directory, tmp_path):
        source = write_csv(
            tmp_path / "hires.csv",
            "John,Smith,Engineering,,,next tuesday",
            ",Nobody,Engineering,,,",
            "Sam,Seller,Sales,,,",
        )

        summary = runner.run_file(source)

        assert [result.succeeded for result in summary.results] == [False, False, True]
        assert "next tuesday" in summary.results[0].error
        assert "FirstName" in summary.results[1].error
        assert set(directory.accounts) == {"sseller"}

    def test_unexpected_exception_is_contained(self, app_config, tmp_path):
        workflow = Mock(spec=OnboardingWorkflow)
        workflow.run.side_effect = RuntimeError("connection reset")
        runner = BatchRunner(workflow, app_config.storage.logs_dir, console=False)
        source = write_csv(tmp_path / "hires.csv", "John,Smith,Engineering,,,")

        summary = runner.run_file(source)

        assert summary.failed == 1
        assert summary.results[0].error == "connection reset"
        assert summary.results[0].username == "jsmith"


class TestReadRows:
    def test_missing_file(self, tmp_path):
        with pytest.raises(BatchInputError):
            read_rows(tmp_path / "absent.csv")

    def test_missing_required_column(self, tmp_path):
        source = tmp_path / "hires.csv"
        source.write_text("FirstName,LastName\nJohn,Smith\n", encoding="utf-8")

        with pytest.raises(BatchInputError, match="Department"):
            read_rows(source)

    def test_blank_lines_skipped(self, tmp_path):
        source = write_csv(tmp_path / "hires.csv", "John,Smith,Engineering,,,", ",,,,,")

        assert len(read_rows(source)) == 1

    def test_byte_order_mark_is_ignored(self, tmp_path):
        source = tmp_path / "excel.csv"
        source.write_text("\ufeff" + HEADER + "John,Smith,Engineering,,,\n", encoding="utf-8")

        rows = read_rows(source)

        assert rows[0][1]["FirstName"] == "John"


class TestRecordParsing:
    def test_record_from_row(self):
        record = record_from_row(
            {
                "FirstName": " john ",
                "LastName": "smith",
                "Department": "Engineering",
                "Title": "Engineer",
                "Manager": "jmanager",
                "StartDate": "2026-03-02",
            },
            2,
        )

        assert record.display_name == "John Smith"
        assert record.manager == "jmanager"
        assert record.start_date == date(2026, 3, 2)

    def test_missing_department(self):
        with pytest.raises(InvalidRecordError, match="Row 4"):
            record_from_row({"FirstName": "John", "LastName": "Smith", "Department": ""}, 4)

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2026-03-02", date(2026, 3, 2)),
            ("03/02/2026", date(2026, 3, 2)),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_start_date(self, raw, expected):
        assert parse_start_date(raw) == expected

    def test_parse_start_date_rejects_other_formats(self):
        with pytest.raises(ValueError):
            parse_start_date("2 March 2026")
