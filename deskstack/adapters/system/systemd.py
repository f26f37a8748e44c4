"""
systemd adapter — enable and start units.

A single attempt per unit; the executor never retries.
"""

from __future__ import annotations

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import receipt_from_result, run_command, which
from deskstack.core.models.action import Receipt


class SystemdAdapter(Adapter):
    """``systemctl enable --now <unit>``."""

    operations = frozenset({"enable"})

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return which("systemctl")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, error = super().validate(context)
        if valid and not context.action.target:
            return False, "Missing target unit"
        return valid, error

    def execute(self, context: ExecutionContext) -> Receipt:
        unit = context.action.target
        result = run_command(
            ["systemctl", "enable", "--now", unit],
            needs_sudo=True,
            sudo_password=context.sudo_password,
            timeout=context.timeout,
        )
        return receipt_from_result(self.name, context, result, output=f"{unit} enabled", unit=unit)
