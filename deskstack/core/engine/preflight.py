"""
Preflight — the only checks allowed to abort a run.

Everything here runs before phase (1) and mutates nothing. A failure
raises PreconditionError; per-item problems are never raised.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


class PreconditionError(Exception):
    """A fatal condition detected before any mutation."""


def check_not_root() -> None:
    """The run must start as the desktop user, not as root.

    User-level state (shell settings, extensions, ~/.config) belongs to
    the invoking user; privileged steps go through sudo.
    """
    if os.geteuid() == 0:
        raise PreconditionError(
            "Do not run deskstack as root. Run it as your desktop user; "
            "it will ask for sudo when needed."
        )


def sudo_cached() -> bool:
    """Whether sudo works right now without a password."""
    try:
        result = subprocess.run(
            ["sudo", "-n", "true"],
            capture_output=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def validate_sudo_password(password: str) -> bool:
    """Check *password* with ``sudo -S -k -v`` (nothing is run)."""
    if not password:
        return False
    try:
        result = subprocess.run(
            ["sudo", "-S", "-k", "-v", "-p", ""],
            input=password + "\n",
            capture_output=True,
            text=True,
            timeout=15,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def check_sudo(password: str = "") -> None:
    """Require a usable sudo credential: cached, or a valid password."""
    if password:
        if not validate_sudo_password(password):
            raise PreconditionError("sudo rejected the supplied password")
        return
    if not sudo_cached():
        raise PreconditionError(
            "No sudo credential available. Run 'sudo -v' first or "
            "answer the password prompt."
        )


def run_preflight(
    *,
    sudo_password: str = "",
    skip_sudo: bool = False,
) -> None:
    """Process-level checks, in order. Raises PreconditionError."""
    check_not_root()
    if skip_sudo:
        logger.debug("preflight: sudo check skipped")
        return
    check_sudo(sudo_password)
