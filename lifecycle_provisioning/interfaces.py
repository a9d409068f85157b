"""Service boundaries used by the workflows.

Concrete adapters live in ``ad_client``, ``licensing``, ``mail`` and
``home_share``; tests substitute in-memory fakes.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .models import Identity


class DirectoryClient(ABC):
    """Account and group operations against the identity directory."""

    @abstractmethod
    def lookup(self, username: str) -> Optional[Identity]:
        """Return the account with this sAMAccountName, or ``None``."""

    @abstractmethod
    def find_manager(self, identifier: str) -> Optional[Identity]:
        """Resolve a manager given a username, email, UPN or DN."""

    @abstractmethod
    def create(self, fields: Dict[str, Any]) -> Identity:
        """Create an account.

        Raises ``ConflictError`` if the username or DN is taken and
        ``IdentityCreationError`` for any other rejection. Never overwrites.
        """

    @abstractmethod
    def disable(self, identity: Identity) -> None: ...

    @abstractmethod
    def reset_credential(self, identity: Identity, secret: str, must_change: bool = False) -> None: ...

    @abstractmethod
    def get_groups(self, identity: Identity) -> List[str]: ...

    @abstractmethod
    def add_to_group(self, identity: Identity, group: str) -> None:
        """Raises ``MembershipError`` on failure."""

    @abstractmethod
    def remove_from_group(self, identity: Identity, group: str) -> None:
        """Raises ``MembershipError`` on failure."""

    @abstractmethod
    def set_expiration(self, identity: Identity, expires_on: date) -> None: ...

    @abstractmethod
    def move(self, identity: Identity, target_ou: str) -> None: ...

    @abstractmethod
    def set_description(self, identity: Identity, text: str) -> None: ...

    @abstractmethod
    def set_home_directory(self, identity: Identity, path: str, drive: str) -> None: ...


class LicenseProvisioner(ABC):
    @abstractmethod
    def assign(self, identity: Identity, sku_id: str, disabled_plans: Iterable[str] = ()) -> None:
        """Assign a license SKU; raises ``LicenseError`` on failure."""


class MailProvisioner(ABC):
    @abstractmethod
    def set_forwarding(self, identity: Identity, target_address: str, keep_copy: bool = True) -> None:
        """Forward the identity's mail; raises ``MailForwardingError`` on failure."""


class ResourceProvisioner(ABC):
    @abstractmethod
    def create_home(self, identity: Identity, base_path: Path) -> Path:
        """Create ``base_path/username`` and grant the identity modify rights."""

    @abstractmethod
    def archive_home(self, source: Path, archive_base: Path, username: str, on: date) -> Path:
        """Copy the home tree to ``archive_base/username_YYYYMMDD``."""


__all__ = ["DirectoryClient", "LicenseProvisioner", "MailProvisioner", "ResourceProvisioner"]
