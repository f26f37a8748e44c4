"""
gsettings adapter — the desktop-shell configuration store.

Runs as the invoking user (never sudo). Array values are parsed from
and rendered to GVariant text (``@as []``, ``['a', 'b']``).
"""

from __future__ import annotations

import ast
import logging

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.shell.runner import receipt_from_result, run_command, which
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)


def parse_string_array(text: str) -> list[str]:
    """Parse a GVariant ``as`` value as printed by ``gsettings get``.

    >>> parse_string_array("@as []")
    []
    >>> parse_string_array("['a@x', 'b@y']")
    ['a@x', 'b@y']
    """
    text = text.strip()
    if text.startswith("@as"):
        text = text[3:].strip()
    if not text:
        return []
    value = ast.literal_eval(text)
    if not isinstance(value, list | tuple):
        raise ValueError(f"not a string array: {text!r}")
    return [str(v) for v in value]


def format_string_array(values: list[str]) -> str:
    """Render a list as GVariant ``as`` text."""
    if not values:
        return "@as []"
    return "[" + ", ".join(repr(v) for v in values) + "]"


class GsettingsAdapter(Adapter):
    """gsettings get/set.

    Action params:
        schema (str): GSettings schema id.
        key (str): Key name.
        value (str | list[str]): New value (set, set-array).
        schemadir (str): Optional extra schema directory (extension schemas).
    """

    operations = frozenset({"get", "set", "get-array", "set-array"})

    @property
    def name(self) -> str:
        return "gsettings"

    def is_available(self) -> bool:
        return which("gsettings")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, error = super().validate(context)
        if not valid:
            return valid, error
        if not context.param("schema") or not context.param("key"):
            return False, "Missing required params: 'schema' and 'key'"
        if context.action.operation.startswith("set") and context.param("value") is None:
            return False, "Missing required param: 'value'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        op = context.action.operation
        base = ["gsettings"]
        if context.param("schemadir"):
            base += ["--schemadir", context.param("schemadir")]
        schema, key = context.param("schema"), context.param("key")

        if op in ("get", "get-array"):
            result = run_command([*base, "get", schema, key], timeout=context.timeout)
            if not result["ok"] or op == "get":
                return receipt_from_result(self.name, context, result)
            try:
                values = parse_string_array(result["stdout"])
            except (ValueError, SyntaxError) as e:
                return self.fail(context, f"Unparseable array for {schema} {key}: {e}")
            return self.ok(context, output=result["stdout"].strip(), metadata={"values": values})

        value = context.param("value")
        text = format_string_array(list(value)) if op == "set-array" else str(value)
        result = run_command([*base, "set", schema, key, text], timeout=context.timeout)
        return receipt_from_result(self.name, context, result, output=f"{schema} {key} = {text}")
