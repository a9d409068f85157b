"""Configuration loading utilities for the lifecycle provisioning toolkit."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import LifecycleError


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
DEFAULT_TEMPLATE_PATH = Path("config/settings.example.yaml")
ENV_CONFIG_PATH = "ONBOARD_CONFIG"
ENV_PREFIX = "ONBOARD_"

DEFAULT_ACL_COMMAND = "icacls {path} /grant {domain}\\{username}:(OI)(CI)M /T"


@dataclass(frozen=True)
class OrganizationConfig:
    """Naming constants for the organization being provisioned."""

    domain: str
    email_domain: str
    name: str


@dataclass(frozen=True)
class LDAPConfig:
    """Settings required to connect to Active Directory via LDAP."""

    server_uri: str
    user_dn: str
    password: str
    base_dn: str
    user_ou: str
    disabled_ou: Optional[str] = None
    use_ssl: bool = True
    mock_data_file: Optional[Path] = None
    group_search_base: Optional[str] = None
    all_users_group: str = "Domain Users"


@dataclass(frozen=True)
class SharesConfig:
    """File share roots for home folders and their archives."""

    home_root: Optional[Path] = None
    archive_root: Optional[Path] = None
    home_drive: str = "H:"
    acl_command: str = DEFAULT_ACL_COMMAND


@dataclass(frozen=True)
class SyncConfig:
    """Settings for executing a directory sync command (e.g. Azure AD Connect)."""

    command: str = ""
    shell: bool = False
    timeout: int = 120


@dataclass(frozen=True)
class M365Config:
    """Settings for the Microsoft 365 / Graph integration."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    default_usage_location: Optional[str] = None
    license_wait_seconds: int = 30

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


@dataclass(frozen=True)
class ExchangeConfig:
    """Settings for Exchange Online PowerShell (mail forwarding)."""

    organization: Optional[str] = None
    app_id: Optional[str] = None
    cert_thumbprint: Optional[str] = None
    powershell: str = "pwsh"
    timeout: int = 120

    @property
    def has_credentials(self) -> bool:
        return bool(self.organization and self.app_id and self.cert_thumbprint)


@dataclass(frozen=True)
class StorageConfig:
    """Filesystem locations used by the application."""

    templates_dir: Path = Path("config/templates")
    logs_dir: Path = Path("logs")


@dataclass(frozen=True)
class OffboardingConfig:
    account_expiry_days: int = 90


@dataclass(frozen=True)
class CredentialsConfig:
    password_length: int = 16


@dataclass(frozen=True)
class AppConfig:
    """Aggregate configuration for the application."""

    organization: OrganizationConfig
    ldap: LDAPConfig
    shares: SharesConfig = field(default_factory=SharesConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    m365: M365Config = field(default_factory=M365Config)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    offboarding: OffboardingConfig = field(default_factory=OffboardingConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)


class ConfigurationError(LifecycleError):
    """Raised when the configuration file or environment variables are invalid."""

    fatal = True


class ConfigNotFoundError(ConfigurationError):
    """Raised when the configuration file does not exist."""


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigNotFoundError(
            f"Configuration file '{path}' does not exist. "
            "Create it from 'config/settings.example.yaml' or set environment variables."
        )
    with path.open("r", encoding="utf-8") as file:
        try:
            payload = yaml.safe_load(file) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Configuration file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping.")
    return payload


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Override configuration values with environment variables."""

    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        if len(path) < 2:
            continue
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def _resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def ensure_default_config(
    path: Optional[Path] = None, template_path: Optional[Path] = None
) -> Path:
    """Ensure a configuration file exists, copying from the example if needed."""

    target_path = _resolve_config_path(path)
    if target_path.exists():
        return target_path

    template = Path(template_path) if template_path is not None else DEFAULT_TEMPLATE_PATH
    if not template.exists():
        raise ConfigNotFoundError(
            "Default configuration template not found. "
            "Ensure 'config/settings.example.yaml' is present or specify a template."
        )

    target_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(template, target_path)
    return target_path


def _load_config_dict(path: Optional[Path] = None) -> Dict[str, Any]:
    resolved_path = _resolve_config_path(path)
    if resolved_path == DEFAULT_CONFIG_PATH:
        ensure_default_config(resolved_path)

    config_dict = _load_from_file(resolved_path)
    return _apply_environment_overrides(config_dict)


def _get_required(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    try:
        section = config_dict[key]
    except KeyError as exc:
        raise ConfigurationError(f"Missing required configuration section: '{key}'.") from exc
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return section


def _require_value(section: Dict[str, Any], key: str, section_name: str) -> str:
    value = _optional_str(section.get(key))
    if not value:
        raise ConfigurationError(f"Missing {section_name} configuration key: '{key}'.")
    return value


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_int(value: Any, key: str) -> int:
    try:
        if isinstance(value, str):
            return int(value.strip())
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Configuration key '{key}' must be an integer, got {value!r}.") from exc


def _optional_path(raw: Any) -> Optional[Path]:
    """Convert a raw config value to ``Path`` if set, otherwise ``None``."""

    if raw is None:
        return None
    if isinstance(raw, Path):
        return raw
    if isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            return None
        return Path(stripped)
    return Path(raw)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from disk and environment variables."""

    return parse_config(_load_config_dict(path))


def parse_config(config_dict: Dict[str, Any]) -> AppConfig:
    """Validate a raw settings mapping and build an :class:`AppConfig`.

    Every required value is checked here so that a bad settings file fails
    before any workflow touches the directory.
    """

    org_section = _get_required(config_dict, "organization")
    ldap_section = _get_required(config_dict, "ldap")

    domain = _require_value(org_section, "domain", "organization")
    organization = OrganizationConfig(
        domain=domain,
        email_domain=_optional_str(org_section.get("email_domain")) or domain,
        name=_require_value(org_section, "name", "organization"),
    )

    ldap_config = LDAPConfig(
        server_uri=_require_value(ldap_section, "server_uri", "LDAP"),
        user_dn=_optional_str(ldap_section.get("user_dn")) or "",
        password=str(ldap_section.get("password") or ""),
        base_dn=_require_value(ldap_section, "base_dn", "LDAP"),
        user_ou=_require_value(ldap_section, "user_ou", "LDAP"),
        disabled_ou=_optional_str(ldap_section.get("disabled_ou")),
        use_ssl=_to_bool(ldap_section.get("use_ssl", True)),
        mock_data_file=_optional_path(ldap_section.get("mock_data_file")),
        group_search_base=_optional_str(ldap_section.get("group_search_base")),
        all_users_group=_optional_str(ldap_section.get("all_users_group")) or "Domain Users",
    )
    if not ldap_config.server_uri.startswith("mock://") and not ldap_config.user_dn:
        raise ConfigurationError("Missing LDAP configuration key: 'user_dn'.")

    shares_section = config_dict.get("shares") or {}
    shares_config = SharesConfig(
        home_root=_optional_path(shares_section.get("home_root")),
        archive_root=_optional_path(shares_section.get("archive_root")),
        home_drive=_optional_str(shares_section.get("home_drive")) or "H:",
        acl_command=(
            DEFAULT_ACL_COMMAND
            if shares_section.get("acl_command") is None
            else str(shares_section.get("acl_command")).strip()
        ),
    )

    sync_section = config_dict.get("sync") or {}
    sync_config = SyncConfig(
        command=str(sync_section.get("command") or ""),
        shell=_to_bool(sync_section.get("shell", False)),
        timeout=_to_int(sync_section.get("timeout", 120), "sync.timeout"),
    )

    m365_section = config_dict.get("m365") or {}
    m365_config = M365Config(
        tenant_id=_optional_str(m365_section.get("tenant_id")),
        client_id=_optional_str(m365_section.get("client_id")),
        client_secret=_optional_str(m365_section.get("client_secret")),
        default_usage_location=_optional_str(m365_section.get("default_usage_location")),
        license_wait_seconds=_to_int(
            m365_section.get("license_wait_seconds", 30), "m365.license_wait_seconds"
        ),
    )
    if m365_config.license_wait_seconds < 0:
        raise ConfigurationError("m365.license_wait_seconds must not be negative.")

    exchange_section = config_dict.get("exchange") or {}
    exchange_config = ExchangeConfig(
        organization=_optional_str(exchange_section.get("organization")),
        app_id=_optional_str(exchange_section.get("app_id")),
        cert_thumbprint=_optional_str(exchange_section.get("cert_thumbprint")),
        powershell=_optional_str(exchange_section.get("powershell")) or "pwsh",
        timeout=_to_int(exchange_section.get("timeout", 120), "exchange.timeout"),
    )

    storage_section = config_dict.get("storage") or {}
    storage_config = StorageConfig(
        templates_dir=_optional_path(storage_section.get("templates_dir"))
        or StorageConfig().templates_dir,
        logs_dir=_optional_path(storage_section.get("logs_dir")) or StorageConfig().logs_dir,
    )

    offboarding_section = config_dict.get("offboarding") or {}
    offboarding_config = OffboardingConfig(
        account_expiry_days=_to_int(
            offboarding_section.get("account_expiry_days", 90), "offboarding.account_expiry_days"
        ),
    )
    if offboarding_config.account_expiry_days < 0:
        raise ConfigurationError("offboarding.account_expiry_days must not be negative.")

    credentials_section = config_dict.get("credentials") or {}
    credentials_config = CredentialsConfig(
        password_length=_to_int(
            credentials_section.get("password_length", 16), "credentials.password_length"
        ),
    )
    if credentials_config.password_length < 12:
        raise ConfigurationError("credentials.password_length must be at least 12.")

    return AppConfig(
        organization=organization,
        ldap=ldap_config,
        shares=shares_config,
        sync=sync_config,
        m365=m365_config,
        exchange=exchange_config,
        storage=storage_config,
        offboarding=offboarding_config,
        credentials=credentials_config,
    )


__all__ = [
    "AppConfig",
    "ConfigNotFoundError",
    "ConfigurationError",
    "CredentialsConfig",
    "ExchangeConfig",
    "LDAPConfig",
    "M365Config",
    "OffboardingConfig",
    "OrganizationConfig",
    "SharesConfig",
    "StorageConfig",
    "SyncConfig",
    "ensure_default_config",
    "load_config",
    "parse_config",
]
