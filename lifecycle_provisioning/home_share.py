"""Home folder creation and archival on a file share."""
from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from datetime import date
from pathlib import Path
from typing import Callable

from .errors import ResourceError
from .interfaces import ResourceProvisioner
from .models import Identity

logger = logging.getLogger(__name__)


def archive_path_for(archive_base: Path, username: str, on: date) -> Path:
    return Path(archive_base) / f"{username}_{on:%Y%m%d}"


class FileShareProvisioner(ResourceProvisioner):
    """Creates home folders and grants access with an ACL command such as ``icacls``.

    ``acl_command`` is a template with ``{path}``, ``{domain}`` and
    ``{username}`` placeholders. An empty template skips the ACL step, which
    is what POSIX shares mounted with inherited permissions want.
    """

    def __init__(
        self,
        domain: str,
        acl_command: str = "",
        timeout: int = 60,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.domain = domain
        self.acl_command = (acl_command or "").strip()
        self.timeout = timeout
        self._run = runner

    def create_home(self, identity: Identity, base_path: Path) -> Path:
        path = Path(base_path) / identity.username
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ResourceError(f"Unable to create home folder {path}: {exc}") from exc
        if self.acl_command:
            self._grant_modify(path, identity.username)
        return path

    def _grant_modify(self, path: Path, username: str) -> None:
        arguments = [
            token.format(path=str(path), domain=self.domain, username=username)
            for token in shlex.split(self.acl_command, posix=False)
        ]
        try:
            self._run(arguments, capture_output=True, text=True, timeout=self.timeout, check=True)
        except FileNotFoundError as exc:
            raise ResourceError(f"ACL command not found: {exc}") from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip()
            raise ResourceError(
                f"ACL command failed with exit code {exc.returncode} for {path}."
                + (f" {detail}" if detail else "")
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ResourceError(f"ACL command timed out for {path}.") from exc
        logger.info("Granted modify rights on %s to %s.", path, username)

    def archive_home(self, source: Path, archive_base: Path, username: str, on: date) -> Path:
        source = Path(source)
        if not source.is_dir():
            raise ResourceError(f"Home folder {source} does not exist.")
        destination = archive_path_for(archive_base, username, on)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, destination, dirs_exist_ok=True)
        except (OSError, shutil.Error) as exc:
            raise ResourceError(f"Unable to archive {source} to {destination}: {exc}") from exc
        return destination


__all__ = ["FileShareProvisioner", "archive_path_for"]
