"""Command line interface for the lifecycle provisioning toolkit."""
from __future__ import annotations

import contextlib
import json
import logging
from pathlib import Path
from typing import Iterator, List, NoReturn, Optional

import requests
import typer
from ldap3.core.exceptions import LDAPException

from .ad_client import ADClient
from .audit import AuditLog
from .batch import BatchRunner, parse_start_date
from .config import AppConfig, ConfigurationError, load_config
from .errors import LifecycleError
from .home_share import FileShareProvisioner
from .licensing import GraphLicenseProvisioner
from .m365_client import M365Client, M365ClientError
from .mail import ExchangeMailProvisioner
from .models import EmployeeRecord, RoleTemplate, WorkflowResult
from .naming import derive_username, netbios_name
from .offboarding import OffboardingWorkflow
from .onboarding import OnboardingWorkflow
from .storage import RoleTemplateStore

logger = logging.getLogger(__name__)

app = typer.Typer(help="Provision and retire employee identities across Active Directory and Microsoft 365.")
role_app = typer.Typer(help="Manage per-department role templates.")
app.add_typer(role_app, name="role")

CONFIG_OPTION_HELP = "Path to a specific settings file (overrides default)."


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _template_store(config: AppConfig) -> RoleTemplateStore:
    return RoleTemplateStore(config.storage.templates_dir)


@contextlib.contextmanager
def _directory(config: AppConfig) -> Iterator[ADClient]:
    try:
        client = ADClient(config.ldap)
    except LDAPException as exc:
        typer.echo(f"Error: Unable to connect to {config.ldap.server_uri}: {exc}")
        raise typer.Exit(code=1)
    try:
        yield client
    finally:
        client.close()


def _file_shares(config: AppConfig) -> FileShareProvisioner:
    return FileShareProvisioner(
        domain=netbios_name(config.organization.domain),
        acl_command=config.shares.acl_command,
    )


def _license_provisioner(config: AppConfig) -> Optional[GraphLicenseProvisioner]:
    if not config.m365.has_credentials:
        return None
    try:
        client = M365Client(config.m365)
    except (M365ClientError, ValueError, requests.RequestException) as exc:
        logger.warning("Microsoft 365 client unavailable: %s", exc)
        typer.echo(f"Warning: Microsoft 365 client unavailable, licenses will be skipped: {exc}")
        return None
    return GraphLicenseProvisioner(
        client,
        wait_seconds=config.m365.license_wait_seconds,
        default_usage_location=config.m365.default_usage_location,
    )


def _onboarding_workflow(config: AppConfig, directory: ADClient) -> OnboardingWorkflow:
    return OnboardingWorkflow(
        config,
        _template_store(config),
        directory,
        resources=_file_shares(config),
        licenses=_license_provisioner(config),
    )


def _print_result(result: WorkflowResult) -> None:
    typer.echo(json.dumps(result.to_dict(), indent=2))
    if result.temporary_secret:
        typer.echo(f"Temporary password for {result.username} (shown once): {result.temporary_secret}")


def _fail(exc: LifecycleError) -> NoReturn:
    typer.echo(f"Error: {exc}")
    if exc.result is not None and exc.result.log_path:
        typer.echo(f"See {exc.result.log_path} for details.")
    raise typer.Exit(code=1)


@app.command("onboard")
def onboard_user(
    first_name: str = typer.Argument(..., help="Employee first name."),
    last_name: str = typer.Argument(..., help="Employee last name."),
    department: str = typer.Option(..., "--department", help="Department whose role template applies."),
    title: str = typer.Option("", "--title", help="Job title."),
    manager: Optional[str] = typer.Option(
        None, "--manager", help="Manager username, email or distinguished name."
    ),
    start_date: Optional[str] = typer.Option(
        None, "--start-date", help="First working day (YYYY-MM-DD or MM/DD/YYYY)."
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help=CONFIG_OPTION_HELP),
) -> None:
    """Provision a new employee from their department's role template."""

    try:
        parsed_start = parse_start_date(start_date)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--start-date")

    config = _load_configuration(config_path)
    employee = EmployeeRecord(
        first_name=first_name,
        last_name=last_name,
        department=department,
        title=title,
        manager=manager,
        start_date=parsed_start,
    )
    subject = derive_username(employee.first_name, employee.last_name) or "unknown"

    with _directory(config) as directory:
        workflow = _onboarding_workflow(config, directory)
        try:
            with AuditLog(config.storage.logs_dir, "onboarding", subject) as audit:
                result = workflow.run(employee, audit)
        except LifecycleError as exc:
            _fail(exc)

    _print_result(result)


@app.command("offboard")
def offboard_user(
    username: str = typer.Argument(..., help="sAMAccountName of the departing employee."),
    forward_to: Optional[str] = typer.Option(
        None, "--forward-to", help="Address that should receive the mailbox's mail."
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help=CONFIG_OPTION_HELP),
) -> None:
    """Disable an account, strip its access and preserve its data."""

    config = _load_configuration(config_path)

    with _directory(config) as directory:
        workflow = OffboardingWorkflow(
            config,
            directory,
            resources=_file_shares(config),
            mail=ExchangeMailProvisioner(config.exchange) if config.exchange.has_credentials else None,
        )
        try:
            with AuditLog(config.storage.logs_dir, "offboarding", username) as audit:
                result = workflow.run(username, audit, forwarding_target=forward_to)
        except LifecycleError as exc:
            _fail(exc)

    _print_result(result)


@app.command("batch")
def onboard_batch(
    csv_path: Path = typer.Argument(..., help="CSV with FirstName, LastName, Department, Title, Manager, StartDate."),
    config_path: Optional[Path] = typer.Option(None, "--config", help=CONFIG_OPTION_HELP),
) -> None:
    """Onboard every row of a CSV file, continuing past failed records."""

    config = _load_configuration(config_path)

    with _directory(config) as directory:
        runner = BatchRunner(_onboarding_workflow(config, directory), config.storage.logs_dir)
        try:
            summary = runner.run_file(csv_path)
        except LifecycleError as exc:
            typer.echo(f"Error: {exc}")
            raise typer.Exit(code=2)

    for result in summary.results:
        label = result.username or "-"
        if result.succeeded:
            typer.echo(f"[{result.status.value}] {result.display_name} ({label})")
            if result.temporary_secret:
                typer.echo(f"    temporary password (shown once): {result.temporary_secret}")
        else:
            typer.echo(f"[failed] {result.display_name} ({label}): {result.error}")
    typer.echo(
        f"{len(summary.results)} records: {summary.succeeded} succeeded, {summary.failed} failed. "
        f"Summary log: {summary.log_path}"
    )
    raise typer.Exit(code=summary.exit_code)


@role_app.command("add")
def add_role(
    department: str = typer.Argument(..., help="Department the template applies to."),
    description: Optional[str] = typer.Option(None, "--description", help="Friendly description."),
    user_ou: Optional[str] = typer.Option(None, "--user-ou", help="Target OU for new accounts."),
    home_share: Optional[str] = typer.Option(None, "--home-share", help="Home folder share root override."),
    license_sku_id: Optional[str] = typer.Option(None, "--license", help="Microsoft 365 SKU id to assign."),
    disabled_plan: Optional[List[str]] = typer.Option(
        None, "--disabled-plan", help="Service plan id to disable within the SKU (repeatable)."
    ),
    group: Optional[List[str]] = typer.Option(
        None,
        "--group",
        help="Name or distinguished name of a group to include (repeatable).",
    ),
    channel: Optional[List[str]] = typer.Option(None, "--channel", help="Team channel id (repeatable)."),
    site: Optional[List[str]] = typer.Option(None, "--site", help="Site id (repeatable)."),
    config_path: Optional[Path] = typer.Option(None, "--config", help=CONFIG_OPTION_HELP),
) -> None:
    """Add or replace a department's role template."""

    config = _load_configuration(config_path)
    template = RoleTemplate.from_dict(
        {
            "department": department,
            "description": description,
            "user_ou": user_ou,
            "home_share": home_share,
            "license_sku_id": license_sku_id,
            "disabled_plans": disabled_plan or [],
            "groups": group or [],
            "channels": channel or [],
            "sites": site or [],
        }
    )
    path = _template_store(config).save(template)
    typer.echo(f"Saved role template '{template.department}' to {path}.")


@role_app.command("list")
def list_roles(
    config_path: Optional[Path] = typer.Option(None, "--config", help=CONFIG_OPTION_HELP),
) -> None:
    """Display configured role templates."""

    config = _load_configuration(config_path)
    departments = _template_store(config).departments()

    if not departments:
        typer.echo("No role templates configured yet.")
        raise typer.Exit(code=0)

    for name in departments:
        typer.echo(f"- {name}")


@role_app.command("show")
def show_role(
    department: str = typer.Argument(..., help="Department to display."),
    config_path: Optional[Path] = typer.Option(None, "--config", help=CONFIG_OPTION_HELP),
) -> None:
    """Print a single role template."""

    config = _load_configuration(config_path)
    try:
        template = _template_store(config).load(department)
    except LifecycleError as exc:
        _fail(exc)

    typer.echo(f"- {template.department}")
    if template.description:
        typer.echo(f"    description: {template.description}")
    if template.user_ou:
        typer.echo(f"    user_ou: {template.user_ou}")
    if template.home_share:
        typer.echo(f"    home_share: {template.home_share}")
    if template.license_sku_id:
        typer.echo(f"    license: {template.license_sku_id}")
    for label, values in (
        ("disabled_plans", template.disabled_plans),
        ("groups", template.groups),
        ("channels", template.channels),
        ("sites", template.sites),
    ):
        if values:
            typer.echo(f"    {label}:")
            for value in values:
                typer.echo(f"      - {value}")


def run():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    app()


if __name__ == "__main__":
    run()
