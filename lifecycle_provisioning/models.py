"""Data models for role templates, employees, identities and workflow results."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple


def _unique_preserve(values: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        cleaned = str(value or "").strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            result.append(cleaned)
    return result


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def normalize_person_name(raw: str) -> str:
    stripped = (raw or "").strip()
    if not stripped:
        return ""

    def _capitalize_segment(segment: str) -> str:
        return "-".join(part.capitalize() for part in segment.split("-"))

    return " ".join(_capitalize_segment(part) for part in stripped.split())


@dataclass(frozen=True)
class RoleTemplate:
    """Department-scoped onboarding bundle: groups, license and locations."""

    department: str
    groups: Tuple[str, ...] = ()
    license_sku_id: Optional[str] = None
    disabled_plans: Tuple[str, ...] = ()
    user_ou: Optional[str] = None
    home_share: Optional[Path] = None
    channels: Tuple[str, ...] = ()
    sites: Tuple[str, ...] = ()
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], department: Optional[str] = None) -> "RoleTemplate":
        name = str(data.get("department") or department or "").strip()
        if not name:
            raise ValueError("Role template is missing a department name.")
        sku = str(data.get("license_sku_id") or data.get("license") or "").strip()
        home_share = str(data.get("home_share") or "").strip()
        return cls(
            department=name,
            groups=tuple(_unique_preserve(_as_list(data.get("groups")))),
            license_sku_id=sku or None,
            disabled_plans=tuple(_unique_preserve(_as_list(data.get("disabled_plans")))),
            user_ou=(str(data.get("user_ou")).strip() or None) if data.get("user_ou") else None,
            home_share=Path(home_share) if home_share else None,
            channels=tuple(_unique_preserve(_as_list(data.get("channels")))),
            sites=tuple(_unique_preserve(_as_list(data.get("sites")))),
            description=data.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "department": self.department,
            "description": self.description,
            "user_ou": self.user_ou,
            "home_share": str(self.home_share) if self.home_share else None,
            "groups": list(self.groups),
            "license_sku_id": self.license_sku_id,
            "disabled_plans": list(self.disabled_plans),
            "channels": list(self.channels),
            "sites": list(self.sites),
        }


@dataclass
class EmployeeRecord:
    """Represents an employee being onboarded."""

    first_name: str
    last_name: str
    department: str
    title: str = ""
    manager: Optional[str] = None
    start_date: Optional[date] = None

    def __post_init__(self) -> None:
        self.first_name = normalize_person_name(self.first_name)
        self.last_name = normalize_person_name(self.last_name)
        self.department = (self.department or "").strip()
        self.title = (self.title or "").strip()
        self.manager = (self.manager or "").strip() or None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Identity:
    """A directory account as seen by the workflows."""

    username: str
    distinguished_name: str
    principal_name: str = ""
    email: str = ""
    display_name: str = ""
    enabled: bool = True
    groups: set[str] = field(default_factory=set)
    home_directory: Optional[str] = None
    expiration: Optional[date] = None
    description: Optional[str] = None
    department: Optional[str] = None
    title: Optional[str] = None


class LogLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: LogLevel
    message: str


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepOutcome:
    name: str
    status: StepStatus
    detail: str = ""


class WorkflowStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class WorkflowResult:
    """Summary emitted once at the end of every workflow run."""

    workflow: str
    username: str
    display_name: str
    status: WorkflowStatus
    steps: Tuple[StepOutcome, ...] = ()
    email: Optional[str] = None
    department: Optional[str] = None
    title: Optional[str] = None
    manager: Optional[str] = None
    start_date: Optional[date] = None
    groups_added: int = 0
    groups_removed: int = 0
    groups_failed: int = 0
    expiration_date: Optional[date] = None
    forwarding_target: Optional[str] = None
    home_path: Optional[Path] = None
    archive_path: Optional[Path] = None
    log_path: Optional[Path] = None
    snapshot_path: Optional[Path] = None
    error: Optional[str] = None
    temporary_secret: Optional[str] = field(default=None, repr=False, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status is not WorkflowStatus.FAILED

    def step(self, name: str) -> Optional[StepOutcome]:
        return next((outcome for outcome in self.steps if outcome.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        def _text(value: Any) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "workflow": self.workflow,
            "username": self.username,
            "display_name": self.display_name,
            "status": self.status.value,
            "email": self.email,
            "department": self.department,
            "title": self.title,
            "manager": self.manager,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "groups_added": self.groups_added,
            "groups_removed": self.groups_removed,
            "groups_failed": self.groups_failed,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "forwarding_target": self.forwarding_target,
            "home_path": _text(self.home_path),
            "archive_path": _text(self.archive_path),
            "log_path": _text(self.log_path),
            "snapshot_path": _text(self.snapshot_path),
            "error": self.error,
            "steps": [
                {"name": step.name, "status": step.status.value, "detail": step.detail}
                for step in self.steps
            ],
        }


def overall_status(steps: Iterable[StepOutcome]) -> WorkflowStatus:
    """Collapse step outcomes into the run status of a workflow that was not aborted."""

    degraded = {StepStatus.FAILED, StepStatus.PARTIAL}
    if any(step.status in degraded for step in steps):
        return WorkflowStatus.PARTIAL
    return WorkflowStatus.SUCCESS


__all__ = [
    "EmployeeRecord",
    "Identity",
    "LogEntry",
    "LogLevel",
    "RoleTemplate",
    "StepOutcome",
    "StepStatus",
    "WorkflowResult",
    "WorkflowStatus",
    "normalize_person_name",
    "overall_status",
]
