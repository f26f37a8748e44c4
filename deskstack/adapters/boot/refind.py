"""
rEFInd adapter — install the boot manager onto the EFI system partition.

Idempotent: when the loader binary is already on the ESP the install
step is reported as done without re-running ``refind-install``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import receipt_from_result, run_command, which
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)

REFIND_DIR = Path("EFI") / "refind"
REFIND_LOADER = REFIND_DIR / "refind_x64.efi"


class RefindAdapter(Adapter):
    """``install``: ``params.esp_path`` is the mounted ESP (default /boot/efi)."""

    operations = frozenset({"install"})

    @property
    def name(self) -> str:
        return "refind"

    def is_available(self) -> bool:
        return which("refind-install")

    def execute(self, context: ExecutionContext) -> Receipt:
        esp = Path(context.param("esp_path", "/boot/efi"))
        loader = esp / REFIND_LOADER

        present = run_command(
            ["test", "-f", str(loader)],
            needs_sudo=True,
            sudo_password=context.sudo_password,
            timeout=context.timeout,
        )
        if present["ok"]:
            return self.ok(context, output=f"rEFInd already installed at {loader}")

        if not self.is_available():
            return self.fail(context, "refind-install not found (is the refind package installed?)")

        result = run_command(
            ["refind-install"],
            needs_sudo=True,
            sudo_password=context.sudo_password,
            timeout=context.timeout,
        )
        return receipt_from_result(
            self.name, context, result,
            output=f"rEFInd installed to {esp / REFIND_DIR}",
            esp_path=str(esp),
        )
