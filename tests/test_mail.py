"""
Tests for Exchange Online mail forwarding.
"""
from __future__ import annotations

import subprocess
from unittest.mock import Mock

import pytest

from lifecycle_provisioning.config import ExchangeConfig
from lifecycle_provisioning.errors import MailForwardingError
from lifecycle_provisioning.mail import ExchangeMailProvisioner
from lifecycle_provisioning.models import Identity

CONFIG = ExchangeConfig(organization="example.onmicrosoft.com", app_id="app-id", cert_thumbprint="ABC123")


@pytest.fixture
def identity():
    return Identity(
        username="asmith",
        distinguished_name="CN=Alice Smith,OU=Users,DC=corp,DC=example,DC=com",
        email="asmith@example.com",
    )


def completed(returncode=0, stdout="SUCCESS\n", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestExchangeMailProvisioner:
    def test_runs_set_mailbox(self, identity):
        runner = Mock(return_value=completed())

        ExchangeMailProvisioner(CONFIG, runner=runner).set_forwarding(identity, "boss@example.com")

        command = runner.call_args.args[0]
        assert command[0] == "pwsh"
        script = command[-1]
        assert "Set-Mailbox -Identity 'asmith@example.com'" in script
        assert "-ForwardingSmtpAddress 'boss@example.com'" in script
        assert "-DeliverToMailboxAndForward $true" in script
        assert runner.call_args.kwargs["timeout"] == CONFIG.timeout

    def test_quotes_are_escaped(self, identity):
        runner = Mock(return_value=completed())

        ExchangeMailProvisioner(CONFIG, runner=runner).set_forwarding(identity, "o'brien@example.com")

        assert "'o''brien@example.com'" in runner.call_args.args[0][-1]

    def test_requires_credentials(self, identity):
        runner = Mock()

        with pytest.raises(MailForwardingError, match="not configured"):
            ExchangeMailProvisioner(ExchangeConfig(), runner=runner).set_forwarding(identity, "boss@example.com")

        runner.assert_not_called()

    def test_powershell_missing(self, identity):
        runner = Mock(side_effect=FileNotFoundError("pwsh"))

        with pytest.raises(MailForwardingError, match="PowerShell"):
            ExchangeMailProvisioner(CONFIG, runner=runner).set_forwarding(identity, "boss@example.com")

    def test_command_failure(self, identity):
        runner = Mock(return_value=completed(returncode=1, stdout="", stderr="Mailbox not found"))

        with pytest.raises(MailForwardingError, match="Mailbox not found"):
            ExchangeMailProvisioner(CONFIG, runner=runner).set_forwarding(identity, "boss@example.com")

    def test_timeout(self, identity):
        runner = Mock(side_effect=subprocess.TimeoutExpired(cmd="pwsh", timeout=120))

        with pytest.raises(MailForwardingError, match="timed out"):
            ExchangeMailProvisioner(CONFIG, runner=runner).set_forwarding(identity, "boss@example.com")
