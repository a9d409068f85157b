from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from lifecycle_provisioning.audit import AuditLog
from lifecycle_provisioning.config import parse_config
from lifecycle_provisioning.storage import RoleTemplateStore

from .fakes import FakeDirectory

USER_OU = "OU=Users,DC=corp,DC=example,DC=com"
DISABLED_OU = "OU=Disabled Users,DC=corp,DC=example,DC=com"
ALL_USERS_DN = "CN=Domain Users,OU=Groups,DC=corp,DC=example,DC=com"


@pytest.fixture
def settings(tmp_path: Path) -> dict:
    """Raw settings mapping for a mock directory rooted in ``tmp_path``."""
    return {
        "organization": {
            "domain": "corp.example.com",
            "email_domain": "example.com",
            "name": "Example Corp",
        },
        "ldap": {
            "server_uri": "mock://",
            "base_dn": "DC=corp,DC=example,DC=com",
            "user_ou": USER_OU,
            "disabled_ou": DISABLED_OU,
            "all_users_group": "Domain Users",
        },
        "shares": {
            "home_root": str(tmp_path / "home"),
            "archive_root": str(tmp_path / "archive"),
            "acl_command": "",
        },
        "m365": {"license_wait_seconds": 0, "default_usage_location": "US"},
        "storage": {
            "templates_dir": str(tmp_path / "templates"),
            "logs_dir": str(tmp_path / "logs"),
        },
    }


@pytest.fixture
def app_config(settings):
    return parse_config(settings)


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "templates"
    directory.mkdir()
    (directory / "Engineering.yaml").write_text(
        yaml.safe_dump(
            {
                "department": "Engineering",
                "groups": ["Engineering", "VPN Users", "GitHub Users"],
                "license_sku_id": "sku-e3",
                "disabled_plans": ["plan-yammer"],
            }
        ),
        encoding="utf-8",
    )
    (directory / "Sales.yaml").write_text(
        yaml.safe_dump({"department": "Sales", "groups": ["Sales"]}),
        encoding="utf-8",
    )
    return directory


@pytest.fixture
def template_store(templates_dir: Path) -> RoleTemplateStore:
    return RoleTemplateStore(templates_dir)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def audit_factory(app_config):
    """Build quiet audit logs under the configured logs directory."""

    def _make(workflow: str, subject: str) -> AuditLog:
        return AuditLog(app_config.storage.logs_dir, workflow, subject, console=False)

    return _make
