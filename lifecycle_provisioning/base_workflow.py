"""Shared step bookkeeping for the onboarding and offboarding workflows."""
from __future__ import annotations

from typing import Any, Callable, List

from .audit import AuditLog
from .errors import LifecycleError
from .models import StepOutcome, StepStatus, WorkflowResult, WorkflowStatus


class BaseWorkflow:
    """Records one :class:`StepOutcome` per major step of a run."""

    kind = "workflow"

    def __init__(self) -> None:
        self.steps: List[StepOutcome] = []

    def _reset(self) -> None:
        self.steps = []

    def _record(self, name: str, status: StepStatus, detail: str = "") -> StepOutcome:
        outcome = StepOutcome(name=name, status=status, detail=detail)
        self.steps.append(outcome)
        return outcome

    def _skip(self, audit: AuditLog, name: str, reason: str, warn: bool = False) -> StepOutcome:
        if warn:
            audit.warn("Skipping %s: %s", name.replace("_", " "), reason)
        else:
            audit.info("Skipping %s: %s", name.replace("_", " "), reason)
        return self._record(name, StepStatus.SKIPPED, reason)

    def _attempt(
        self,
        audit: AuditLog,
        name: str,
        action: Callable[[], Any],
        success_message: str,
    ) -> bool:
        """Run a non-fatal step. Domain errors are logged as WARN and swallowed."""

        try:
            action()
        except LifecycleError as exc:
            audit.warn("%s failed: %s", name.replace("_", " ").capitalize(), exc)
            self._record(name, StepStatus.FAILED, str(exc))
            return False
        audit.success(success_message)
        self._record(name, StepStatus.SUCCEEDED, success_message)
        return True

    def _abort(self, audit: AuditLog, name: str, exc: LifecycleError, **fields: Any) -> LifecycleError:
        """Log a fatal step failure and attach the partial result to the error."""

        audit.error("%s failed; aborting %s: %s", name.replace("_", " ").capitalize(), self.kind, exc)
        self._record(name, StepStatus.FAILED, str(exc))
        exc.result = WorkflowResult(
            workflow=self.kind,
            status=WorkflowStatus.FAILED,
            steps=tuple(self.steps),
            log_path=audit.path,
            error=str(exc),
            **fields,
        )
        return exc


def group_status(attempted: int, failed: int) -> StepStatus:
    if attempted == 0:
        return StepStatus.SKIPPED
    if failed == 0:
        return StepStatus.SUCCEEDED
    if failed == attempted:
        return StepStatus.FAILED
    return StepStatus.PARTIAL


__all__ = ["BaseWorkflow", "group_status"]
