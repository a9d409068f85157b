"""
Tests for settings loading and validation.
"""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from lifecycle_provisioning.config import (
    DEFAULT_ACL_COMMAND,
    ConfigNotFoundError,
    ConfigurationError,
    ensure_default_config,
    load_config,
    parse_config,
)


class TestParseConfig:
    def test_defaults(self, settings):
        config = parse_config(settings)

        assert config.organization.email_domain == "example.com"
        assert config.ldap.all_users_group == "Domain Users"
        assert config.offboarding.account_expiry_days == 90
        assert config.credentials.password_length == 16
        assert config.shares.home_drive == "H:"
        assert config.shares.archive_root == Path(settings["shares"]["archive_root"])
        assert not config.m365.has_credentials
        assert not config.exchange.has_credentials

    def test_email_domain_falls_back_to_domain(self, settings):
        del settings["organization"]["email_domain"]

        assert parse_config(settings).organization.email_domain == "corp.example.com"

    def test_default_acl_command(self, settings):
        del settings["shares"]["acl_command"]

        assert parse_config(settings).shares.acl_command == DEFAULT_ACL_COMMAND

    def test_license_wait_defaults_to_thirty_seconds(self, settings):
        del settings["m365"]["license_wait_seconds"]

        assert parse_config(settings).m365.license_wait_seconds == 30

    @pytest.mark.parametrize("section", ["organization", "ldap"])
    def test_missing_section(self, settings, section):
        del settings[section]

        with pytest.raises(ConfigurationError, match=section):
            parse_config(settings)

    @pytest.mark.parametrize("key", ["server_uri", "base_dn", "user_ou"])
    def test_missing_ldap_key(self, settings, key):
        del settings["ldap"][key]

        with pytest.raises(ConfigurationError, match=key):
            parse_config(settings)

    def test_bind_dn_required_for_real_directory(self, settings):
        settings["ldap"]["server_uri"] = "ldaps://dc01.corp.example.com"

        with pytest.raises(ConfigurationError, match="user_dn"):
            parse_config(settings)

    def test_rejects_short_passwords(self, settings):
        settings["credentials"] = {"password_length": 8}

        with pytest.raises(ConfigurationError, match="password_length"):
            parse_config(settings)

    def test_rejects_negative_expiry(self, settings):
        settings["offboarding"] = {"account_expiry_days": -1}

        with pytest.raises(ConfigurationError):
            parse_config(settings)

    def test_rejects_non_integer(self, settings):
        settings["m365"]["license_wait_seconds"] = "soon"

        with pytest.raises(ConfigurationError, match="license_wait_seconds"):
            parse_config(settings)

    def test_configuration_errors_are_fatal(self, settings):
        del settings["ldap"]

        with pytest.raises(ConfigurationError) as excinfo:
            parse_config(settings)

        assert excinfo.value.fatal


class TestLoadConfig:
    @pytest.fixture
    def settings_file(self, tmp_path, settings):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump(settings), encoding="utf-8")
        return path

    def test_loads_file(self, settings_file):
        config = load_config(settings_file)

        assert config.organization.name == "Example Corp"

    def test_environment_overrides(self, settings_file, monkeypatch):
        monkeypatch.setenv("ONBOARD_OFFBOARDING__ACCOUNT_EXPIRY_DAYS", "30")
        monkeypatch.setenv("ONBOARD_LDAP__DISABLED_OU", "OU=Leavers,DC=corp,DC=example,DC=com")

        config = load_config(settings_file)

        assert config.offboarding.account_expiry_days == 30
        assert config.ldap.disabled_ou == "OU=Leavers,DC=corp,DC=example,DC=com"

    def test_config_path_from_environment(self, settings_file, monkeypatch):
        monkeypatch.setenv("ONBOARD_CONFIG", str(settings_file))

        assert load_config().organization.domain == "corp.example.com"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("organization: [unterminated\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="not valid YAML"):
            load_config(path)

    def test_ensure_default_config_copies_template(self, tmp_path, settings_file):
        target = tmp_path / "config" / "settings.yaml"

        created = ensure_default_config(target, template_path=settings_file)

        assert created == target
        assert target.read_text(encoding="utf-8") == settings_file.read_text(encoding="utf-8")

    def test_ensure_default_config_without_template(self, tmp_path):
        with pytest.raises(ConfigNotFoundError):
            ensure_default_config(tmp_path / "settings.yaml", template_path=tmp_path / "missing.yaml")
