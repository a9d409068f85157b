"""Microsoft 365 license assignment for newly created identities."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional

from .errors import LicenseError
from .interfaces import LicenseProvisioner
from .m365_client import M365Client, M365ClientError
from .models import Identity

logger = logging.getLogger(__name__)

USER_SELECT = "id,userPrincipalName,usageLocation"


class GraphLicenseProvisioner(LicenseProvisioner):
    """Assigns a SKU through Microsoft Graph after a fixed propagation wait.

    The account is created on-premises and reaches Entra ID only after the
    next directory sync, so the provisioner sleeps ``wait_seconds`` once and
    then makes a single lookup. There is no polling loop; a user who has not
    synced yet produces a ``LicenseError``.
    """

    def __init__(
        self,
        client: M365Client,
        wait_seconds: int = 30,
        default_usage_location: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.wait_seconds = max(0, int(wait_seconds))
        self.default_usage_location = (default_usage_location or "").strip() or None
        self._sleep = sleep

    def assign(self, identity: Identity, sku_id: str, disabled_plans: Iterable[str] = ()) -> None:
        if self.wait_seconds:
            logger.info(
                "Waiting %ss for %s to reach Microsoft 365 before license assignment.",
                self.wait_seconds,
                identity.username,
            )
            self._sleep(self.wait_seconds)

        graph_user = self._find_user(identity)
        user_id = graph_user["id"]
        self._ensure_usage_location(identity, graph_user)

        try:
            details = self.client.get_user_license_details(user_id)
        except M365ClientError as exc:
            raise LicenseError(f"Unable to read licenses for {identity.username}: {exc}") from exc
        if any(str(item.get("skuId", "")).lower() == sku_id.lower() for item in details):
            logger.info("License %s already assigned to %s.", sku_id, identity.username)
            return

        try:
            self.client.assign_license(user_id, sku_id, disabled_plans=list(disabled_plans))
        except M365ClientError as exc:
            raise LicenseError(f"License assignment failed for {identity.username}: {exc}") from exc

    def _find_user(self, identity: Identity) -> Dict[str, Any]:
        candidates = [value for value in dict.fromkeys([identity.principal_name, identity.email]) if value]
        if not candidates:
            raise LicenseError(f"{identity.username} has no principal name or mail to look up.")
        for candidate in candidates:
            try:
                graph_user = self.client.find_user(candidate, select=USER_SELECT)
            except M365ClientError as exc:
                raise LicenseError(f"Microsoft 365 lookup failed for {candidate}: {exc}") from exc
            if graph_user and graph_user.get("id"):
                return graph_user
        raise LicenseError(
            f"{identity.principal_name or identity.username} is not yet available in Microsoft 365."
        )

    def _ensure_usage_location(self, identity: Identity, graph_user: Dict[str, Any]) -> None:
        usage_location = str(graph_user.get("usageLocation") or "").strip()
        if len(usage_location) == 2:
            return
        if not self.default_usage_location:
            raise LicenseError(
                f"{identity.username} has no usage location; configure m365.default_usage_location."
            )
        try:
            self.client.update_user(graph_user["id"], usageLocation=self.default_usage_location)
        except M365ClientError as exc:
            raise LicenseError(f"Unable to set usage location for {identity.username}: {exc}") from exc
        logger.info("Set usageLocation=%s for %s.", self.default_usage_location, identity.username)


__all__ = ["GraphLicenseProvisioner"]
