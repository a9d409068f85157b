"""Mailbox forwarding through Exchange Online PowerShell."""
from __future__ import annotations

import logging
import os
import subprocess
from typing import Callable

from .config import ExchangeConfig
from .errors import MailForwardingError
from .interfaces import MailProvisioner
from .models import Identity

logger = logging.getLogger(__name__)

FORWARDING_SCRIPT = """Import-Module ExchangeOnlineManagement -ErrorAction Stop
$ErrorActionPreference = 'Stop'
try {{
    Connect-ExchangeOnline -AppId '{app_id}' -CertificateThumbprint '{thumbprint}' -Organization '{organization}' -ShowBanner:$false -ErrorAction Stop
    Set-Mailbox -Identity '{mailbox}' -ForwardingSmtpAddress '{target}' -DeliverToMailboxAndForward ${keep_copy} -ErrorAction Stop
    Write-Output 'SUCCESS'
}} catch {{
    Write-Error $_.Exception.Message
    exit 1
}} finally {{
    try {{ Disconnect-ExchangeOnline -Confirm:$false -ErrorAction SilentlyContinue }} catch {{}}
}}"""


def _ps_quote(value: str) -> str:
    return (value or "").replace("'", "''")


class ExchangeMailProvisioner(MailProvisioner):
    """Runs ``Set-Mailbox`` in a PowerShell child process."""

    def __init__(
        self,
        config: ExchangeConfig,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.config = config
        self._run = runner

    def set_forwarding(self, identity: Identity, target_address: str, keep_copy: bool = True) -> None:
        if not self.config.has_credentials:
            raise MailForwardingError(
                "Exchange Online is not configured; set exchange.organization, app_id and cert_thumbprint."
            )
        mailbox = identity.email or identity.principal_name
        if not mailbox:
            raise MailForwardingError(f"{identity.username} has no mailbox address.")

        script = FORWARDING_SCRIPT.format(
            app_id=_ps_quote(self.config.app_id or ""),
            thumbprint=_ps_quote(self.config.cert_thumbprint or ""),
            organization=_ps_quote(self.config.organization or ""),
            mailbox=_ps_quote(mailbox),
            target=_ps_quote(target_address),
            keep_copy="true" if keep_copy else "false",
        )
        env = os.environ.copy()
        env.pop("PSModulePath", None)

        try:
            result = self._run(
                [self.config.powershell, "-NoProfile", "-NonInteractive", "-Command", script],
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
                env=env,
            )
        except FileNotFoundError as exc:
            raise MailForwardingError(f"PowerShell executable not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise MailForwardingError("Exchange Online command timed out.") from exc

        if result.returncode != 0 or "SUCCESS" not in (result.stdout or ""):
            error_msg = (result.stderr or "").strip() or (result.stdout or "").strip() or "Unknown error"
            raise MailForwardingError(f"Exchange command failed: {error_msg}")
        logger.info("Forwarding %s to %s (keep copy: %s).", mailbox, target_address, keep_copy)


__all__ = ["ExchangeMailProvisioner", "FORWARDING_SCRIPT"]
