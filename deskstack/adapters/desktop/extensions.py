"""
GNOME extensions adapter — the live extension loader.

``gnome-extensions`` talks to the running shell over D-Bus, so
``enable``/``disable`` fail outside a graphical session. The persisted
lists in gsettings are the source of truth; the executor treats a live
failure after a successful persisted write as "takes effect at next
login".
"""

from __future__ import annotations

import logging
import re

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import receipt_from_result, run_command, which
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)

_SHELL_VERSION_RE = re.compile(r"GNOME Shell (\d+)(?:\.(\S+))?")


class GnomeExtensionsAdapter(Adapter):
    """Operations:
        list:          installed uuids → metadata["uuids"]
        install:       ``params.path`` is a staged extension zip
        enable:        ``target`` uuid
        disable:       ``target`` uuid
        shell-version: running shell major version → metadata["major"]
    """

    operations = frozenset({"list", "install", "enable", "disable", "shell-version"})

    @property
    def name(self) -> str:
        return "gnome-extensions"

    def is_available(self) -> bool:
        return which("gnome-extensions")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, error = super().validate(context)
        if not valid:
            return valid, error
        op = context.action.operation
        if op in ("enable", "disable") and not context.action.target:
            return False, f"Missing target uuid for {op}"
        if op == "install" and not context.param("path"):
            return False, "Missing required param: 'path' for install"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        op = context.action.operation
        if op == "shell-version":
            return self._shell_version(context)
        if op == "list":
            result = run_command(["gnome-extensions", "list"], timeout=context.timeout)
            if not result["ok"]:
                return receipt_from_result(self.name, context, result)
            uuids = [line.strip() for line in result["stdout"].splitlines() if line.strip()]
            return self.ok(context, output=f"{len(uuids)} installed", metadata={"uuids": uuids})
        if op == "install":
            path = context.param("path")
            result = run_command(
                ["gnome-extensions", "install", "--force", path],
                timeout=context.timeout,
            )
            return receipt_from_result(self.name, context, result, output=f"installed {context.action.target}")

        uuid = context.action.target
        result = run_command(["gnome-extensions", op, uuid], timeout=context.timeout)
        return receipt_from_result(self.name, context, result, output=f"{op}d {uuid}")

    def _shell_version(self, context: ExecutionContext) -> Receipt:
        result = run_command(["gnome-shell", "--version"], timeout=context.timeout)
        if not result["ok"]:
            return receipt_from_result(self.name, context, result)
        match = _SHELL_VERSION_RE.search(result["stdout"])
        if not match:
            return self.fail(context, f"Unrecognised shell version: {result['stdout'].strip()}")
        return self.ok(context, output=match.group(0), metadata={"major": match.group(1)})
