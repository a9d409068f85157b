"""Offboarding workflow: retire an identity and preserve what it owned."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from .audit import AuditLog
from .base_workflow import BaseWorkflow, group_status
from .config import AppConfig
from .credentials import generate_secret
from .errors import DisableError, LifecycleError, NotFoundError
from .interfaces import DirectoryClient, MailProvisioner, ResourceProvisioner
from .models import Identity, StepStatus, WorkflowResult, overall_status


def is_all_users_group(group: str, all_users_group: str) -> bool:
    """Match the universal group by plain name or by the CN of a DN."""

    wanted = (all_users_group or "").strip().lower()
    if not wanted:
        return False
    cleaned = group.strip()
    if cleaned.lower() == wanted:
        return True
    first = cleaned.split(",", 1)[0]
    return first.upper().startswith("CN=") and first[3:].strip().lower() == wanted


class OffboardingWorkflow(BaseWorkflow):
    """Deprovision one identity in a fixed order.

    Resolving and disabling the account are fatal; every other step is
    best-effort. Group membership is written to a snapshot artifact before
    any removal so that the forensic record exists even if later steps fail.
    """

    kind = "offboarding"

    def __init__(
        self,
        config: AppConfig,
        directory: DirectoryClient,
        resources: Optional[ResourceProvisioner] = None,
        mail: Optional[MailProvisioner] = None,
        secret_factory: Callable[[int], str] = generate_secret,
        today: Callable[[], date] = date.today,
    ) -> None:
        super().__init__()
        self.config = config
        self.directory = directory
        self.resources = resources
        self.mail = mail
        self._secret_factory = secret_factory
        self._today = today

    def run(
        self,
        username: str,
        audit: AuditLog,
        forwarding_target: Optional[str] = None,
        run_date: Optional[date] = None,
    ) -> WorkflowResult:
        self._reset()
        run_date = run_date or self._today()
        forwarding_target = (forwarding_target or "").strip() or None
        audit.info("Starting offboarding for %s", username)

        try:
            identity = self.directory.lookup(username)
        except LifecycleError as exc:
            raise self._abort(
                audit,
                "resolve_identity",
                exc,
                username=username,
                display_name="",
                forwarding_target=forwarding_target,
            )
        if identity is None:
            raise self._abort(
                audit,
                "resolve_identity",
                NotFoundError(username),
                username=username,
                display_name="",
                forwarding_target=forwarding_target,
            )
        prior_department = identity.department
        self._record("resolve_identity", StepStatus.SUCCEEDED, identity.distinguished_name)
        audit.info("Resolved %s (%s)", identity.display_name or username, identity.distinguished_name)

        snapshot, snapshot_path = self._snapshot_groups(identity, audit)

        try:
            self.directory.disable(identity)
        except LifecycleError as exc:
            error = DisableError(f"Unable to disable {username}: {exc}")
            raise self._abort(
                audit,
                "disable_account",
                error,
                username=username,
                display_name=identity.display_name,
                department=prior_department,
                forwarding_target=forwarding_target,
                snapshot_path=snapshot_path,
            ) from exc
        audit.success("Disabled account %s", username)
        self._record("disable_account", StepStatus.SUCCEEDED)

        self._attempt(
            audit,
            "reset_credential",
            lambda: self.directory.reset_credential(
                identity, self._secret_factory(self.config.credentials.password_length)
            ),
            "Password reset to a random value",
        )

        removed, failed = self._remove_groups(identity, snapshot, audit)

        description = f"Offboarded {run_date:%Y-%m-%d} (was: {prior_department or 'unknown'})"
        self._attempt(
            audit,
            "stamp_description",
            lambda: self.directory.set_description(identity, description),
            f"Description set to '{description}'",
        )

        disabled_ou = self.config.ldap.disabled_ou
        if disabled_ou:
            self._attempt(
                audit,
                "move_account",
                lambda: self.directory.move(identity, disabled_ou),
                f"Moved {username} to {disabled_ou}",
            )
        else:
            self._skip(audit, "move_account", "no disabled-accounts OU configured")

        expires_on = run_date + timedelta(days=self.config.offboarding.account_expiry_days)
        expired = self._attempt(
            audit,
            "set_expiration",
            lambda: self.directory.set_expiration(identity, expires_on),
            f"Account expires on {expires_on:%Y-%m-%d}",
        )

        self._forward_mail(identity, forwarding_target, audit)
        archive_path = self._archive_home(identity, run_date, audit)

        result = WorkflowResult(
            workflow=self.kind,
            username=username,
            display_name=identity.display_name,
            status=overall_status(self.steps),
            steps=tuple(self.steps),
            email=identity.email or None,
            department=prior_department,
            groups_removed=removed,
            groups_failed=failed,
            expiration_date=expires_on if expired else None,
            forwarding_target=forwarding_target,
            home_path=Path(identity.home_directory) if identity.home_directory else None,
            archive_path=archive_path,
            log_path=audit.path,
            snapshot_path=snapshot_path,
        )
        audit.success(
            "Offboarding complete for %s: %s groups removed, %s failed, expires %s",
            username,
            removed,
            failed,
            f"{expires_on:%Y-%m-%d}" if expired else "not set",
        )
        return result

    def _snapshot_groups(self, identity: Identity, audit: AuditLog) -> tuple[List[str], Optional[Path]]:
        try:
            groups = self.directory.get_groups(identity)
        except LifecycleError as exc:
            audit.warn("Group lookup failed, using memberOf from the account: %s", exc)
            groups = list(identity.groups)
        snapshot = sorted(set(groups) | set(identity.groups), key=str.casefold)

        audit.info("Group membership before removal (%s):", len(snapshot))
        for group in snapshot:
            audit.info("  %s", group)
        payload = {
            "username": identity.username,
            "distinguished_name": identity.distinguished_name,
            "captured_at": datetime.now().isoformat(timespec="seconds"),
            "count": len(snapshot),
            "groups": snapshot,
        }
        try:
            path = audit.write_artifact("groups", payload)
        except OSError as exc:
            audit.warn("Could not write group snapshot artifact: %s", exc)
            self._record("snapshot_groups", StepStatus.FAILED, str(exc))
            return snapshot, None
        audit.success("Saved group snapshot to %s", path)
        self._record("snapshot_groups", StepStatus.SUCCEEDED, str(path))
        return snapshot, path

    def _remove_groups(self, identity: Identity, snapshot: List[str], audit: AuditLog) -> tuple[int, int]:
        all_users = self.config.ldap.all_users_group
        targets = [group for group in snapshot if not is_all_users_group(group, all_users)]
        removed = failed = 0
        for group in targets:
            try:
                self.directory.remove_from_group(identity, group)
            except LifecycleError as exc:
                failed += 1
                audit.warn("Could not remove %s from %s: %s", identity.username, group, exc)
                continue
            removed += 1
            audit.info("Removed %s from %s", identity.username, group)
        status = group_status(len(targets), failed)
        self._record("remove_groups", status, f"{removed} removed, {failed} failed")
        if status is StepStatus.SUCCEEDED:
            audit.success("Removed %s from %s groups", identity.username, removed)
        return removed, failed

    def _forward_mail(self, identity: Identity, target: Optional[str], audit: AuditLog) -> None:
        if not target:
            self._skip(audit, "forward_mail", "no forwarding target supplied")
            return
        if self.mail is None:
            self._skip(audit, "forward_mail", "mail forwarding is not configured", warn=True)
            return
        self._attempt(
            audit,
            "forward_mail",
            lambda: self.mail.set_forwarding(identity, target, keep_copy=True),
            f"Mail for {identity.email or identity.username} forwarded to {target}",
        )

    def _archive_home(self, identity: Identity, run_date: date, audit: AuditLog) -> Optional[Path]:
        if not identity.home_directory:
            self._skip(audit, "archive_home", "no home directory recorded")
            return None
        archive_root = self.config.shares.archive_root
        if archive_root is None or self.resources is None:
            self._skip(audit, "archive_home", "no archive share configured", warn=True)
            return None
        try:
            archive_path = self.resources.archive_home(
                Path(identity.home_directory), archive_root, identity.username, run_date
            )
        except LifecycleError as exc:
            audit.warn("Home folder archive failed: %s", exc)
            self._record("archive_home", StepStatus.FAILED, str(exc))
            return None
        audit.success("Copied %s to %s", identity.home_directory, archive_path)
        self._record("archive_home", StepStatus.SUCCEEDED, str(archive_path))
        return archive_path


__all__ = ["OffboardingWorkflow", "is_all_users_group"]
