"""Directory sync trigger run after an account is created on-premises."""
from __future__ import annotations

import logging
import shlex
import subprocess

from .config import SyncConfig
from .errors import DirectorySyncError

logger = logging.getLogger(__name__)


def run_sync_command(sync: SyncConfig) -> bool:
    """Execute the configured sync command; return ``False`` when none is configured."""

    if not sync.command:
        return False

    logger.info("Running directory sync command: %s", sync.command)
    try:
        subprocess.run(
            sync.command if sync.shell else shlex.split(sync.command),
            shell=sync.shell,
            timeout=sync.timeout,
            check=True,
        )
    except FileNotFoundError as exc:
        raise DirectorySyncError(f"Sync command not found: {exc}") from exc
    except subprocess.CalledProcessError as exc:
        raise DirectorySyncError(f"Sync command failed with exit code {exc.returncode}.") from exc
    except subprocess.TimeoutExpired as exc:
        raise DirectorySyncError("Sync command timed out.") from exc
    return True


__all__ = ["run_sync_command"]
