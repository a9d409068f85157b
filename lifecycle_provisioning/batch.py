"""CSV-driven bulk onboarding."""
from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .audit import AuditLog
from .errors import BatchInputError, InvalidRecordError, LifecycleError
from .models import EmployeeRecord, StepOutcome, StepStatus, WorkflowResult, WorkflowStatus
from .naming import derive_username
from .onboarding import OnboardingWorkflow

logger = logging.getLogger(__name__)

COLUMNS = ("FirstName", "LastName", "Department", "Title", "Manager", "StartDate")
REQUIRED_COLUMNS = ("FirstName", "LastName", "Department")
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")


def parse_start_date(raw: Optional[str]) -> Optional[date]:
    """Parse ``YYYY-MM-DD`` or ``MM/DD/YYYY``; blank means no start date.

    >>> parse_start_date("2026-03-02")
    datetime.date(2026, 3, 2)
    >>> parse_start_date("03/02/2026")
    datetime.date(2026, 3, 2)
    """

    cleaned = (raw or "").strip()
    if not cleaned:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised start date '{cleaned}'; use YYYY-MM-DD or MM/DD/YYYY.")


def record_from_row(row: Dict[str, str], line: int) -> EmployeeRecord:
    values = {key.strip(): (value or "").strip() for key, value in row.items() if key}
    missing = [column for column in REQUIRED_COLUMNS if not values.get(column)]
    if missing:
        raise InvalidRecordError(f"Row {line}: missing {', '.join(missing)}.")
    try:
        start_date = parse_start_date(values.get("StartDate"))
    except ValueError as exc:
        raise InvalidRecordError(f"Row {line}: {exc}") from exc
    return EmployeeRecord(
        first_name=values["FirstName"],
        last_name=values["LastName"],
        department=values["Department"],
        title=values.get("Title", ""),
        manager=values.get("Manager") or None,
        start_date=start_date,
    )


def read_rows(path: Path) -> List[Tuple[int, Dict[str, str]]]:
    """Read the CSV into ``(line, row)`` pairs; row validation is left to the runner."""

    path = Path(path)
    try:
        with path.open("r", encoding="utf-8-sig", newline="") as handle:
            reader = csv.DictReader(handle)
            header = [name.strip() for name in reader.fieldnames or []]
            absent = [column for column in REQUIRED_COLUMNS if column not in header]
            if absent:
                raise BatchInputError(f"{path} is missing required column(s): {', '.join(absent)}.")
            rows = []
            for row in reader:
                if any(isinstance(value, str) and value.strip() for value in row.values()):
                    rows.append((reader.line_num, row))
            return rows
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise BatchInputError(f"Unable to read batch file {path}: {exc}") from exc


@dataclass(frozen=True)
class BatchSummary:
    results: Tuple[WorkflowResult, ...]
    log_path: Optional[Path] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def exit_code(self) -> int:
        return 1 if self.results and self.succeeded == 0 else 0


def _failed_result(subject: str, display_name: str, error: Exception, log_path: Optional[Path]) -> WorkflowResult:
    return WorkflowResult(
        workflow="onboarding",
        username=subject,
        display_name=display_name,
        status=WorkflowStatus.FAILED,
        steps=(StepOutcome("validate", StepStatus.FAILED, str(error)),),
        log_path=log_path,
        error=str(error),
    )


class BatchRunner:
    """Runs the onboarding workflow once per CSV row, isolating each record.

    Every record gets its own :class:`AuditLog`. A record that raises, for any
    reason, becomes a failed :class:`WorkflowResult` and the next record is
    processed.
    """

    def __init__(
        self,
        workflow: OnboardingWorkflow,
        logs_dir: Path,
        console: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.workflow = workflow
        self.logs_dir = Path(logs_dir)
        self.console = console
        self._clock = clock

    def run_file(self, path: Path) -> BatchSummary:
        return self.run(read_rows(path), source=Path(path).stem)

    def run(self, rows: Iterable[Tuple[int, Dict[str, str]]], source: str = "batch") -> BatchSummary:
        results: List[WorkflowResult] = []
        for line, row in rows:
            results.append(self._run_record(line, row))

        summary = BatchSummary(results=tuple(results))
        log_path = self._write_summary(summary, source)
        return BatchSummary(results=summary.results, log_path=log_path)

    def _run_record(self, line: int, row: Dict[str, str]) -> WorkflowResult:
        first = (row.get("FirstName") or "").strip()
        last = (row.get("LastName") or "").strip()
        subject = derive_username(first, last) or f"row{line}"
        display_name = f"{first} {last}".strip()

        with AuditLog(self.logs_dir, "onboarding", subject, console=self.console, clock=self._clock) as audit:
            try:
                record = record_from_row(row, line)
                return self.workflow.run(record, audit)
            except LifecycleError as exc:
                if exc.result is not None:
                    return exc.result
                audit.error("Record skipped: %s", exc)
                return _failed_result(subject, display_name, exc, audit.path)
            except Exception as exc:
                logger.exception("Unexpected failure onboarding row %s", line)
                audit.error("Unexpected failure: %s", exc)
                return _failed_result(subject, display_name, exc, audit.path)

    def _write_summary(self, summary: BatchSummary, source: str) -> Path:
        with AuditLog(self.logs_dir, "batch", source, console=self.console, clock=self._clock) as audit:
            for result in summary.results:
                if result.succeeded:
                    audit.success(
                        "%s (%s): %s, log %s",
                        result.display_name,
                        result.username,
                        result.status.value,
                        result.log_path,
                    )
                else:
                    audit.error(
                        "%s (%s): failed: %s", result.display_name, result.username or "-", result.error
                    )
            audit.info(
                "Batch complete: %s records, %s succeeded, %s failed",
                len(summary.results),
                summary.succeeded,
                summary.failed,
            )
            audit.write_artifact(
                "batch_summary",
                {
                    "source": source,
                    "total": len(summary.results),
                    "succeeded": summary.succeeded,
                    "failed": summary.failed,
                    "results": [result.to_dict() for result in summary.results],
                },
            )
            return audit.path


__all__ = [
    "BatchRunner",
    "BatchSummary",
    "COLUMNS",
    "parse_start_date",
    "read_rows",
    "record_from_row",
]
