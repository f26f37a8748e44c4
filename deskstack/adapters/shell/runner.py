"""
Subprocess runner — the single place ``subprocess.run`` is called.

Every system adapter (apt, flatpak, systemctl, gsettings, gnome-extensions,
refind-install, fwupdmgr) shells out through ``run_command``. Sudo
handling, timeouts and output trimming live here.

Sudo invariants:
    - Password piped via stdin only (``sudo -S``)
    - ``-k`` invalidates cached credentials every time
    - Password never logged, never written to disk
    - Password never appears in command args
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from typing import Any

from deskstack.adapters.base import ExecutionContext
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 2000


def _tail(text: str | None) -> str:
    return text[-_OUTPUT_TAIL:] if text else ""


def which(tool: str) -> bool:
    """Whether *tool* is on PATH."""
    return shutil.which(tool) is not None


def run_command(
    cmd: list[str],
    *,
    needs_sudo: bool = False,
    sudo_password: str = "",
    timeout: int = 120,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
) -> dict[str, Any]:
    """Run a command, optionally through sudo.

    Without a password, sudo is invoked non-interactively (``-n``) so
    a cached credential or NOPASSWD rule still works and nothing ever
    blocks on a prompt.

    Args:
        cmd: Command list for ``subprocess.run()``.
        needs_sudo: Whether the command requires root.
        sudo_password: Sudo password (piped to stdin).
        timeout: Seconds before ``TimeoutExpired``.
        env_overrides: Extra env vars for the child.
        cwd: Working directory for the command.

    Returns:
        ``{"ok": True, "stdout": "...", "elapsed_ms": N}`` on success,
        ``{"ok": False, "error": "...", ...}`` on failure.
    """
    stdin_data = None
    if needs_sudo and os.geteuid() != 0:
        if sudo_password:
            cmd = ["sudo", "-S", "-k", "-p", ""] + cmd
            stdin_data = sudo_password + "\n"
        else:
            cmd = ["sudo", "-n"] + cmd

    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    logger.debug("exec: %s", " ".join(cmd))
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=stdin_data,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return {"ok": False, "error": f"Command timed out ({timeout}s)"}
    except FileNotFoundError:
        return {"ok": False, "error": f"Command not found: {cmd[0]}"}
    except OSError as e:
        logger.exception("Subprocess error: %s", cmd[0])
        return {"ok": False, "error": str(e)}

    elapsed_ms = int((time.monotonic() - start) * 1000)

    if result.returncode == 0:
        return {
            "ok": True,
            "stdout": _tail(result.stdout),
            "stderr": _tail(result.stderr),
            "elapsed_ms": elapsed_ms,
        }

    stderr = _tail(result.stderr)
    if needs_sudo and (
        "incorrect password" in stderr.lower()
        or "a password is required" in stderr.lower()
    ):
        return {
            "ok": False,
            "needs_sudo": True,
            "error": "sudo authentication failed",
            "stderr": stderr,
        }

    return {
        "ok": False,
        "error": f"Command failed (exit {result.returncode})",
        "returncode": result.returncode,
        "stderr": stderr,
        "stdout": _tail(result.stdout),
        "elapsed_ms": elapsed_ms,
    }


def receipt_from_result(
    adapter: str,
    context: ExecutionContext,
    result: dict[str, Any],
    *,
    output: str | None = None,
    **metadata: Any,
) -> Receipt:
    """Turn a ``run_command`` result dict into a Receipt."""
    if result["ok"]:
        return Receipt.success(
            adapter=adapter,
            action_id=context.action.id,
            output=output if output is not None else result.get("stdout", "").strip(),
            duration_ms=result.get("elapsed_ms", 0),
            metadata=metadata,
        )
    stderr = result.get("stderr", "").strip()
    detail = stderr.splitlines()[-1] if stderr else ""
    error = f"{result['error']}: {detail}" if detail else result["error"]
    return Receipt.failure(
        adapter=adapter,
        action_id=context.action.id,
        error=error,
        duration_ms=result.get("elapsed_ms", 0),
        metadata={**metadata, "stderr": stderr} if stderr else metadata,
    )
