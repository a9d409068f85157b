"""Per-run audit log: a timestamped, leveled file that is mirrored to the console."""
from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional

from .models import LogEntry, LogLevel

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.SUCCESS: SUCCESS,
}

LOG_FORMAT = "[%(asctime)s] [%(audit_level)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class AuditLog:
    """Append-only log for a single workflow run.

    Open it with ``with AuditLog(...) as audit:`` so the file handler is
    flushed and released on every exit path. Each run gets its own logger;
    nothing is shared between runs.
    """

    def __init__(
        self,
        log_dir: Path,
        workflow: str,
        subject: str,
        console: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.workflow = workflow
        self.subject = subject or "unknown"
        self.console = console
        self._clock = clock
        self.started_at = clock()
        self.entries: List[LogEntry] = []
        self._logger: Optional[logging.Logger] = None
        self.run_id = f"{self.subject}_{self.run_stamp}"
        self.path = self.log_dir / f"{workflow}_{self.run_id}.log"
        counter = 2
        while self.path.exists():
            # another run for the same subject already started this second
            self.run_id = f"{self.subject}_{self.run_stamp}_{counter}"
            self.path = self.log_dir / f"{workflow}_{self.run_id}.log"
            counter += 1

    @property
    def run_stamp(self) -> str:
        return self.started_at.strftime("%Y%m%d_%H%M%S")

    @property
    def closed(self) -> bool:
        return self._logger is None

    def open(self) -> "AuditLog":
        if self._logger is not None:
            return self
        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger = logging.Logger(f"lifecycle_provisioning.audit.{uuid.uuid4().hex}", logging.INFO)
        formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

        file_handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        if self.console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

        self._logger = logger
        return self

    def close(self) -> None:
        logger, self._logger = self._logger, None
        if logger is None:
            return
        for handler in list(logger.handlers):
            handler.flush()
            handler.close()
            logger.removeHandler(handler)

    def __enter__(self) -> "AuditLog":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            self.error("Run terminated: %s", exc)
        self.close()

    def log(self, level: LogLevel, message: str, *args: Any) -> LogEntry:
        text = message % args if args else message
        entry = LogEntry(timestamp=self._clock(), level=level, message=text)
        self.entries.append(entry)
        if self._logger is not None:
            self._logger.log(_LEVELS[level], "%s", text, extra={"audit_level": level.value})
        return entry

    def info(self, message: str, *args: Any) -> LogEntry:
        return self.log(LogLevel.INFO, message, *args)

    def warn(self, message: str, *args: Any) -> LogEntry:
        return self.log(LogLevel.WARN, message, *args)

    def error(self, message: str, *args: Any) -> LogEntry:
        return self.log(LogLevel.ERROR, message, *args)

    def success(self, message: str, *args: Any) -> LogEntry:
        return self.log(LogLevel.SUCCESS, message, *args)

    def entries_at(self, level: LogLevel) -> List[LogEntry]:
        return [entry for entry in self.entries if entry.level is level]

    def write_artifact(self, kind: str, payload: Any) -> Path:
        """Write a JSON side artifact next to the log file and return its path."""

        self.log_dir.mkdir(parents=True, exist_ok=True)
        path = self.log_dir / f"{kind}_{self.run_id}.json"
        with path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, default=str)
        return path


__all__ = ["AuditLog", "SUCCESS"]
