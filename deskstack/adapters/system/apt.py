"""
APT adapter — the distribution package manager.

One package per action so the report carries a per-name outcome.
apt itself is idempotent: installing an installed package is a no-op
with exit 0.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import receipt_from_result, run_command, which
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)

# sudo resets the environment, so the frontend is passed on the command line.
_APT = ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get"]


class AptAdapter(Adapter):
    """apt-get / dpkg / debconf operations.

    Operations:
        update:           refresh the package index
        upgrade:          full distribution upgrade
        install:          install ``target``
        remove-unused:    autoremove + autoclean
        add-architecture: enable foreign architecture ``target``
        preseed:          feed ``lines`` (list[str]) to debconf
    """

    operations = frozenset({
        "update", "upgrade", "install", "remove-unused",
        "add-architecture", "preseed",
    })

    @property
    def name(self) -> str:
        return "apt"

    def is_available(self) -> bool:
        return which("apt-get")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, error = super().validate(context)
        if not valid:
            return valid, error
        op = context.action.operation
        if op in ("install", "add-architecture") and not context.action.target:
            return False, f"Missing target for {op}"
        if op == "preseed" and not context.param("lines"):
            return False, "Missing required param: 'lines' for preseed"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        op = context.action.operation
        target = context.action.target

        if op == "update":
            return self._sudo(context, [*_APT, "update"])
        if op == "upgrade":
            return self._sudo(context, [*_APT, "full-upgrade", "-y"])
        if op == "install":
            return self._sudo(context, [*_APT, "install", "-y", target], package=target)
        if op == "remove-unused":
            receipt = self._sudo(context, [*_APT, "autoremove", "-y"])
            if not receipt.ok:
                return receipt
            return self._sudo(context, [*_APT, "autoclean"])
        if op == "add-architecture":
            return self._add_architecture(context, target)
        return self._preseed(context, context.param("lines"))

    def _sudo(self, context: ExecutionContext, cmd: list[str], **metadata) -> Receipt:
        result = run_command(
            cmd,
            needs_sudo=True,
            sudo_password=context.sudo_password,
            timeout=context.timeout,
        )
        return receipt_from_result(self.name, context, result, output="", **metadata)

    def _add_architecture(self, context: ExecutionContext, arch: str) -> Receipt:
        current = run_command(["dpkg", "--print-foreign-architectures"], timeout=context.timeout)
        if current["ok"] and arch in current["stdout"].split():
            return self.ok(context, output=f"{arch} already enabled")
        return self._sudo(context, ["dpkg", "--add-architecture", arch], architecture=arch)

    def _preseed(self, context: ExecutionContext, lines: list[str]) -> Receipt:
        fd, tmp = tempfile.mkstemp(prefix="deskstack-", suffix=".debconf")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
            return self._sudo(context, ["debconf-set-selections", tmp], lines=len(lines))
        finally:
            Path(tmp).unlink(missing_ok=True)
