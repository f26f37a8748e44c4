"""
Filesystem adapter — writes with backup, and existence checks.

User files are written atomically (temp file + rename). Root-owned
files (the ESP, /etc) are staged in a temp file and installed with
``sudo install``, which also creates missing parent directories.

Before overwriting an existing file a timestamped copy
``PATH.bak.YYYYMMDD_HHMMSS`` is kept next to it.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import run_command
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)


def backup_path_for(path: Path, ts: str | None = None) -> Path:
    """``PATH.bak.YYYYMMDD_HHMMSS`` for *path*."""
    ts = ts or time.strftime("%Y%m%d_%H%M%S")
    return path.with_name(f"{path.name}.bak.{ts}")


def write_atomic(path: Path, content: str, mode: int = 0o644) -> None:
    """Write *content* to *path* via a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class FilesystemAdapter(Adapter):
    """File operations with receipts.

    Operations:
        exists: ``path``; output is "True"/"False", metadata["exists"].
        write:  ``path``, ``content``, optional ``backup`` (default True),
                ``needs_sudo`` and ``mode`` (octal string, default "644").
        copy:   ``source``, ``path``; same flags as write.
    """

    operations = frozenset({"exists", "write", "copy"})

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, error = super().validate(context)
        if not valid:
            return valid, error
        if not context.param("path"):
            return False, "Missing required param: 'path'"
        op = context.action.operation
        if op == "write" and context.param("content") is None:
            return False, "Missing required param: 'content' for write operation"
        if op == "copy" and not context.param("source"):
            return False, "Missing required param: 'source' for copy operation"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        target = Path(context.param("path")).expanduser()
        try:
            if context.action.operation == "exists":
                return self._exists(context, target)
            if context.action.operation == "copy":
                content = Path(context.param("source")).read_text(encoding="utf-8")
            else:
                content = context.param("content")
            return self._write(context, target, content)
        except OSError as e:
            return self.fail(
                context,
                f"Filesystem error: {e}",
                metadata={"path": str(target)},
            )

    # ── Operations ──────────────────────────────────────────────

    def _exists(self, ctx: ExecutionContext, target: Path) -> Receipt:
        if ctx.param("needs_sudo", False):
            result = run_command(
                ["test", "-e", str(target)],
                needs_sudo=True,
                sudo_password=ctx.sudo_password,
                timeout=ctx.timeout,
            )
            if not result["ok"] and result.get("returncode") != 1:
                return self.fail(ctx, result["error"], metadata={"path": str(target)})
            exists = result["ok"]
        else:
            exists = target.exists()
        return self.ok(
            ctx,
            output=str(exists),
            metadata={"exists": exists, "path": str(target)},
        )

    def _write(self, ctx: ExecutionContext, target: Path, content: str) -> Receipt:
        needs_sudo = ctx.param("needs_sudo", False)
        mode = ctx.param("mode", "644")
        backup = None

        if ctx.param("backup", True):
            backup = self._backup(ctx, target, needs_sudo)
            if isinstance(backup, Receipt):
                return backup

        if needs_sudo:
            error = self._install_as_root(ctx, target, content, mode)
            if error:
                return self.fail(ctx, error, metadata={"path": str(target)})
        else:
            write_atomic(target, content, int(mode, 8))

        logger.info("Wrote %s (%d bytes)", target, len(content))
        return self.ok(
            ctx,
            output=f"Written {len(content)} bytes to {target}",
            metadata={
                "path": str(target),
                "size": len(content),
                "backup": str(backup) if backup else "",
            },
        )

    def _backup(self, ctx: ExecutionContext, target: Path, needs_sudo: bool) -> Path | Receipt | None:
        """Copy an existing *target* aside. Returns the backup path,
        None when there was nothing to back up, or a failure Receipt."""
        dest = backup_path_for(target)
        result = run_command(
            ["test", "-e", str(target)],
            needs_sudo=needs_sudo,
            sudo_password=ctx.sudo_password,
            timeout=ctx.timeout,
        )
        if not result["ok"]:
            return None
        result = run_command(
            ["cp", "-p", str(target), str(dest)],
            needs_sudo=needs_sudo,
            sudo_password=ctx.sudo_password,
            timeout=ctx.timeout,
        )
        if not result["ok"]:
            # Never overwrite without a backup.
            return self.fail(
                ctx,
                f"Backup of {target} failed: {result['error']}",
                metadata={"path": str(target)},
            )
        logger.info("Backed up %s → %s", target, dest)
        return dest

    def _install_as_root(self, ctx: ExecutionContext, target: Path, content: str, mode: str) -> str:
        fd, tmp = tempfile.mkstemp(prefix="deskstack-", suffix=".stage")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            result = run_command(
                ["install", "-D", "-m", mode, tmp, str(target)],
                needs_sudo=True,
                sudo_password=ctx.sudo_password,
                timeout=ctx.timeout,
            )
        finally:
            Path(tmp).unlink(missing_ok=True)
        return "" if result["ok"] else result["error"]
