"""
Shell command adapter — run one command and capture its output.

Used for the handful of one-off tools that have no adapter of their
own (``powerprofilesctl``, ``update-desktop-database``...).
"""

from __future__ import annotations

import logging

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import receipt_from_result, run_command, which
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)


class ShellCommandAdapter(Adapter):
    """Execute a command list and capture output.

    Action params:
        command (list[str]): The command to execute.
        needs_sudo (bool): Run through sudo (default: False).
        require_tool (bool): Skip instead of fail when the binary is
            missing (default: False).
    """

    operations = frozenset({"run"})

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return which("sh")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, error = super().validate(context)
        if not valid:
            return valid, error
        command = context.param("command")
        if not command or not isinstance(command, list):
            return False, "Missing required param: 'command' (list)"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        command = list(context.param("command"))
        if context.param("require_tool", False) and not which(command[0]):
            return self.skip(context, f"{command[0]} not installed")

        result = run_command(
            command,
            needs_sudo=context.param("needs_sudo", False),
            sudo_password=context.sudo_password,
            timeout=context.timeout,
        )
        return receipt_from_result(self.name, context, result, command=command)
