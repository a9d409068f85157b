"""Error types raised by the provisioning workflows and their service adapters."""
from __future__ import annotations


class LifecycleError(RuntimeError):
    """Base class for workflow errors.

    ``fatal`` errors abort the current workflow run; the rest are logged as
    warnings and the run moves on to the next step. A workflow that aborts
    attaches its partial ``WorkflowResult`` as ``result`` before re-raising.
    """

    fatal = False
    result = None


class TemplateNotFoundError(LifecycleError):
    """Raised when no role template is registered for a department."""

    fatal = True

    def __init__(self, department: str) -> None:
        super().__init__(f"No role template is registered for department '{department}'.")
        self.department = department


class ConflictError(LifecycleError):
    """Raised when the requested username or DN already exists in the directory."""

    def __init__(self, username: str) -> None:
        super().__init__(f"An account named '{username}' already exists.")
        self.username = username


class IdentityCreationError(LifecycleError):
    fatal = True


class NotFoundError(LifecycleError):
    """Raised when the target of an offboarding run does not exist."""

    fatal = True

    def __init__(self, username: str) -> None:
        super().__init__(f"No account named '{username}' was found in the directory.")
        self.username = username


class DisableError(LifecycleError):
    fatal = True


class DirectoryError(LifecycleError):
    """A directory modification was rejected."""


class MembershipError(DirectoryError):
    def __init__(self, group: str, message: str) -> None:
        super().__init__(f"{group}: {message}")
        self.group = group


class ResourceError(LifecycleError):
    pass


class LicenseError(LifecycleError):
    pass


class MailForwardingError(LifecycleError):
    pass


class DirectorySyncError(LifecycleError):
    pass


class BatchInputError(LifecycleError):
    """Raised when a batch input file cannot be read at all."""

    fatal = True


class InvalidRecordError(LifecycleError):
    """A batch row is missing required columns or holds an unparseable value."""

    fatal = True


__all__ = [
    "BatchInputError",
    "ConflictError",
    "DirectoryError",
    "DirectorySyncError",
    "DisableError",
    "IdentityCreationError",
    "InvalidRecordError",
    "LicenseError",
    "LifecycleError",
    "MailForwardingError",
    "MembershipError",
    "NotFoundError",
    "ResourceError",
    "TemplateNotFoundError",
]
