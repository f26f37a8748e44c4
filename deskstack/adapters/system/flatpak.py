"""
Flatpak adapter — sandboxed applications, installed system-wide.
"""

from __future__ import annotations

import logging

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import receipt_from_result, run_command, which
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)


class FlatpakAdapter(Adapter):
    """Flatpak remote and app operations.

    Operations:
        add-remote: ``target`` is the remote name, ``params.url`` its repo file
        install:    ``target`` is the app id, ``params.remote`` the remote
        update:     update every installed app and runtime
    """

    operations = frozenset({"add-remote", "install", "update"})

    @property
    def name(self) -> str:
        return "flatpak"

    def is_available(self) -> bool:
        return which("flatpak")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, error = super().validate(context)
        if not valid:
            return valid, error
        op = context.action.operation
        if op in ("add-remote", "install") and not context.action.target:
            return False, f"Missing target for {op}"
        if op == "add-remote" and not context.param("url"):
            return False, "Missing required param: 'url' for add-remote"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        op = context.action.operation
        target = context.action.target

        if op == "add-remote":
            cmd = ["flatpak", "remote-add", "--if-not-exists", target, context.param("url")]
        elif op == "install":
            remote = context.param("remote", "flathub")
            cmd = ["flatpak", "install", "-y", "--noninteractive", remote, target]
        else:
            cmd = ["flatpak", "update", "-y", "--noninteractive"]

        result = run_command(
            cmd,
            needs_sudo=True,
            sudo_password=context.sudo_password,
            timeout=context.timeout,
        )
        return receipt_from_result(self.name, context, result, output="", app=target)
