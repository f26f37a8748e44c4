"""
Adapter base — the protocol contract between engine and collaborators.

Every external system deskstack touches (apt, flatpak, systemd, the
shell settings store, the extension loader, the extension index, the
boot-loader installer, fwupd, the filesystem) sits behind an Adapter.
The engine only talks to adapters through this protocol, never
directly to external tools.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from deskstack.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    dry_run: bool = False
    timeout: int = 120
    sudo_password: str = Field(default="", repr=False, exclude=True)
    params: dict[str, Any] = Field(default_factory=dict)

    def param(self, name: str, default: Any = None) -> Any:
        """Look up a param, falling back to the action's own params."""
        if name in self.params:
            return self.params[name]
        return self.action.params.get(name, default)


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, is_available, validate, execute
        3. Register it in the AdapterRegistry
    """

    #: Operations this adapter understands; validate() rejects others.
    operations: frozenset[str] = frozenset()

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'apt', 'flatpak', 'gsettings')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available.

        Should be fast and never raise.
        """

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        The default checks the operation name against ``operations``.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        op = context.action.operation
        if self.operations and op not in self.operations:
            valid = ", ".join(sorted(self.operations))
            return False, f"Unknown operation '{op}'. Valid: {valid}"
        return True, ""

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """

    # ── Receipt helpers ────────────────────────────────────────

    def ok(self, context: ExecutionContext, output: str = "", **kwargs: Any) -> Receipt:
        return Receipt.success(self.name, context.action.id, output=output, **kwargs)

    def fail(self, context: ExecutionContext, error: str, **kwargs: Any) -> Receipt:
        return Receipt.failure(self.name, context.action.id, error=error, **kwargs)

    def skip(self, context: ExecutionContext, reason: str, **kwargs: Any) -> Receipt:
        return Receipt.skip(self.name, context.action.id, reason=reason, **kwargs)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
