"""
fwupd adapter — firmware metadata refresh and update listing.

Best effort only: a missing ``fwupdmgr`` is a skip, not a failure.
"""

from __future__ import annotations

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import receipt_from_result, run_command, which
from deskstack.core.models.action import Receipt

# fwupdmgr exits 2 when there is nothing to do.
_NOTHING_TO_DO = 2


class FwupdAdapter(Adapter):
    """``fwupdmgr refresh`` / ``fwupdmgr get-updates``."""

    operations = frozenset({"refresh", "get-updates"})

    @property
    def name(self) -> str:
        return "fwupd"

    def is_available(self) -> bool:
        return which("fwupdmgr")

    def execute(self, context: ExecutionContext) -> Receipt:
        if not self.is_available():
            return self.skip(context, "fwupdmgr not installed")

        if context.action.operation == "refresh":
            cmd = ["fwupdmgr", "refresh", "--force"]
            needs_sudo = True
        else:
            cmd = ["fwupdmgr", "get-updates", "--no-unreported-check"]
            needs_sudo = False

        result = run_command(
            cmd,
            needs_sudo=needs_sudo,
            sudo_password=context.sudo_password,
            timeout=context.timeout,
        )
        if not result["ok"] and result.get("returncode") == _NOTHING_TO_DO:
            return self.ok(context, output="No firmware updates available")
        return receipt_from_result(self.name, context, result)
