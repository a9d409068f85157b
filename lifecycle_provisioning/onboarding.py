"""Onboarding workflow: account, groups, home folder and license for one employee."""
from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .audit import AuditLog
from .base_workflow import BaseWorkflow, group_status
from .config import AppConfig, SyncConfig
from .credentials import generate_secret
from .errors import (
    ConflictError,
    DirectorySyncError,
    IdentityCreationError,
    LifecycleError,
    TemplateNotFoundError,
)
from .interfaces import DirectoryClient, LicenseProvisioner, ResourceProvisioner
from .models import EmployeeRecord, Identity, RoleTemplate, StepStatus, WorkflowResult, overall_status
from .naming import derive_username, principal_and_email, with_collision_suffix
from .storage import RoleTemplateStore
from .sync import run_sync_command

logger = logging.getLogger(__name__)


class OnboardingState(str, Enum):
    VALIDATING = "validating"
    CREATING_IDENTITY = "creating_identity"
    ASSIGNING_GROUPS = "assigning_groups"
    PROVISIONING_HOME = "provisioning_home"
    ASSIGNING_LICENSE = "assigning_license"
    COMPLETE = "complete"
    ABORTED = "aborted"


class OnboardingWorkflow(BaseWorkflow):
    """Provision a new employee from their department's role template.

    The run moves strictly forward through :class:`OnboardingState`. Only a
    missing template (while validating) or a rejected account creation
    aborts it; group, home folder and license failures are logged as
    warnings and reported in the result.
    """

    kind = "onboarding"

    def __init__(
        self,
        config: AppConfig,
        templates: RoleTemplateStore,
        directory: DirectoryClient,
        resources: Optional[ResourceProvisioner] = None,
        licenses: Optional[LicenseProvisioner] = None,
        sync: Callable[[SyncConfig], bool] = run_sync_command,
        secret_factory: Callable[[int], str] = generate_secret,
    ) -> None:
        super().__init__()
        self.config = config
        self.templates = templates
        self.directory = directory
        self.resources = resources
        self.licenses = licenses
        self._sync = sync
        self._secret_factory = secret_factory
        self.state = OnboardingState.VALIDATING

    def _enter(self, state: OnboardingState) -> None:
        self.state = state
        logger.debug("Onboarding state -> %s", state.value)

    def run(self, employee: EmployeeRecord, audit: AuditLog) -> WorkflowResult:
        self._reset()
        self._enter(OnboardingState.VALIDATING)
        audit.info(
            "Starting onboarding for %s (department: %s, title: %s)",
            employee.display_name,
            employee.department,
            employee.title or "-",
        )
        base_fields = dict(
            display_name=employee.display_name,
            department=employee.department,
            title=employee.title,
            manager=employee.manager,
            start_date=employee.start_date,
        )

        try:
            template = self.templates.load(employee.department)
        except TemplateNotFoundError as exc:
            self.state = OnboardingState.ABORTED
            raise self._abort(audit, "validate", exc, username="", **base_fields)
        audit.info("Loaded role template '%s' (%s groups)", template.department, len(template.groups))

        username = derive_username(employee.first_name, employee.last_name)
        if not username:
            self.state = OnboardingState.ABORTED
            error = IdentityCreationError(f"Cannot derive a username from '{employee.display_name}'.")
            raise self._abort(audit, "validate", error, username="", **base_fields)

        base_username = username
        try:
            taken = self.directory.lookup(username) is not None
        except LifecycleError as exc:
            self.state = OnboardingState.ABORTED
            error = IdentityCreationError(f"Unable to check whether {username} is free: {exc}")
            raise self._abort(audit, "validate", error, username=username, **base_fields) from exc
        if taken:
            username = with_collision_suffix(base_username)
            audit.warn("Username %s already exists; using %s", base_username, username)
        secret = self._secret_factory(self.config.credentials.password_length)
        manager_dn = self._resolve_manager(employee, audit)
        self._record("validate", StepStatus.SUCCEEDED, f"username {username}")

        self._enter(OnboardingState.CREATING_IDENTITY)
        ou = template.user_ou or self.config.ldap.user_ou
        try:
            try:
                identity = self.directory.create(
                    self._account_fields(employee, username, base_username, ou, manager_dn, secret)
                )
            except ConflictError as exc:
                if username != base_username:
                    raise
                username = with_collision_suffix(base_username)
                audit.warn(
                    "Directory rejected %s as a duplicate (%s); retrying as %s", base_username, exc, username
                )
                identity = self.directory.create(
                    self._account_fields(employee, username, base_username, ou, manager_dn, secret)
                )
        except LifecycleError as exc:
            self.state = OnboardingState.ABORTED
            email = self._principal_and_email(username)[1]
            if isinstance(exc, IdentityCreationError):
                raise self._abort(
                    audit, "create_identity", exc, username=username, email=email, **base_fields
                )
            error = IdentityCreationError(f"Unable to create {username}: {exc}")
            raise self._abort(
                audit, "create_identity", error, username=username, email=email, **base_fields
            ) from exc
        principal_name, email = self._principal_and_email(username)
        audit.success("Created account %s (%s) in %s", username, principal_name, ou)
        audit.info("Temporary password issued; change required at next logon")
        self._record("create_identity", StepStatus.SUCCEEDED, identity.distinguished_name)
        self._trigger_sync(audit)

        self._enter(OnboardingState.ASSIGNING_GROUPS)
        added, failed = self._assign_groups(identity, template, audit)

        self._enter(OnboardingState.PROVISIONING_HOME)
        home_path = self._provision_home(identity, template, audit)

        self._enter(OnboardingState.ASSIGNING_LICENSE)
        self._assign_license(identity, template, audit)

        self._enter(OnboardingState.COMPLETE)
        result = WorkflowResult(
            workflow=self.kind,
            username=username,
            status=overall_status(self.steps),
            steps=tuple(self.steps),
            email=email,
            groups_added=added,
            groups_failed=failed,
            home_path=home_path,
            log_path=audit.path,
            temporary_secret=secret,
            **base_fields,
        )
        audit.success(
            "Onboarding complete for %s <%s>: %s groups added, %s failed, home %s, start date %s",
            username,
            email,
            added,
            failed,
            home_path or "-",
            employee.start_date.isoformat() if employee.start_date else "-",
        )
        return result

    def _principal_and_email(self, username: str) -> tuple[str, str]:
        organization = self.config.organization
        return principal_and_email(username, organization.domain, organization.email_domain)

    def _account_fields(
        self,
        employee: EmployeeRecord,
        username: str,
        base_username: str,
        ou: str,
        manager_dn: Optional[str],
        secret: str,
    ) -> Dict[str, Any]:
        principal_name, email = self._principal_and_email(username)
        common_name = employee.display_name
        if username != base_username:
            common_name = f"{employee.display_name} ({username})"
        return {
            "sAMAccountName": username,
            "userPrincipalName": principal_name,
            "mail": email,
            "givenName": employee.first_name,
            "sn": employee.last_name,
            "displayName": employee.display_name,
            "title": employee.title,
            "department": employee.department,
            "company": self.config.organization.name,
            "description": employee.title,
            "manager": manager_dn,
            "cn": common_name,
            "ou": ou,
            "password": secret,
            "must_change_password": True,
        }

    def _resolve_manager(self, employee: EmployeeRecord, audit: AuditLog) -> Optional[str]:
        if not employee.manager:
            return None
        try:
            manager = self.directory.find_manager(employee.manager)
        except LifecycleError as exc:
            audit.warn("Manager lookup for '%s' failed: %s", employee.manager, exc)
            return None
        if manager is None:
            audit.warn("Manager '%s' not found; the manager attribute will be left empty", employee.manager)
            return None
        return manager.distinguished_name

    def _trigger_sync(self, audit: AuditLog) -> None:
        try:
            ran = self._sync(self.config.sync)
        except DirectorySyncError as exc:
            audit.warn("Directory sync reported a problem: %s", exc)
            self._record("directory_sync", StepStatus.FAILED, str(exc))
            return
        if ran:
            audit.info("Directory sync triggered")
            self._record("directory_sync", StepStatus.SUCCEEDED)
        else:
            self._record("directory_sync", StepStatus.SKIPPED, "no sync command configured")

    def _assign_groups(self, identity: Identity, template: RoleTemplate, audit: AuditLog) -> tuple[int, int]:
        added = failed = 0
        for group in template.groups:
            try:
                self.directory.add_to_group(identity, group)
            except LifecycleError as exc:
                failed += 1
                audit.warn("Could not add %s to %s: %s", identity.username, group, exc)
                continue
            added += 1
            audit.info("Added %s to %s", identity.username, group)
        status = group_status(len(template.groups), failed)
        self._record("assign_groups", status, f"{added} added, {failed} failed")
        if status is StepStatus.SUCCEEDED:
            audit.success("Added %s to %s groups", identity.username, added)
        return added, failed

    def _provision_home(self, identity: Identity, template: RoleTemplate, audit: AuditLog) -> Optional[Path]:
        base_path = template.home_share or self.config.shares.home_root
        if base_path is None:
            self._skip(audit, "provision_home", "no home share root configured")
            return None
        if self.resources is None:
            self._skip(audit, "provision_home", "no file share provisioner available", warn=True)
            return None

        try:
            home_path = self.resources.create_home(identity, base_path)
        except LifecycleError as exc:
            audit.warn("Home folder creation failed: %s", exc)
            self._record("provision_home", StepStatus.FAILED, str(exc))
            return None
        audit.info("Created home folder %s", home_path)

        try:
            self.directory.set_home_directory(identity, str(home_path), self.config.shares.home_drive)
        except LifecycleError as exc:
            audit.warn("Home folder created but not bound to the account: %s", exc)
            self._record("provision_home", StepStatus.PARTIAL, str(exc))
            return home_path
        audit.success("Home folder %s mapped to %s", home_path, self.config.shares.home_drive)
        self._record("provision_home", StepStatus.SUCCEEDED, str(home_path))
        return home_path

    def _assign_license(self, identity: Identity, template: RoleTemplate, audit: AuditLog) -> None:
        sku_id = template.license_sku_id
        if not sku_id:
            self._skip(audit, "assign_license", "no license SKU in role template")
            return
        if self.licenses is None:
            self._skip(audit, "assign_license", "Microsoft 365 is not configured", warn=True)
            return
        self._attempt(
            audit,
            "assign_license",
            lambda: self.licenses.assign(identity, sku_id, template.disabled_plans),
            f"Assigned license {sku_id} to {identity.principal_name or identity.username}",
        )


__all__ = ["OnboardingState", "OnboardingWorkflow"]
