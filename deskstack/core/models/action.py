"""
Action and Receipt models — the dispatch contract.

An Action is one concrete call into an external collaborator (install
this package, write that file, read this settings key). A Receipt is
its outcome. The executor sends Actions through the adapter registry
and collects Receipts; adapters never raise into the engine.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """A requested call into an adapter.

    ``id`` is stable across runs for the same input (``phase:verb:target``)
    so receipts from two runs can be compared line by line.
    """

    id: str                         # e.g. "packages:install:vlc"
    adapter: str                    # which adapter handles this
    operation: str = ""             # adapter-specific verb
    phase: str = ""                 # executor phase this belongs to
    target: str = ""                # package, service, uuid, path...
    params: dict[str, Any] = Field(default_factory=dict)


class Receipt(BaseModel):
    """Result of an adapter execution.

    Receipts capture the full outcome of an action: Succeeded maps to
    ``ok``, Failed(reason) to ``failed`` with ``error``, Skipped(reason)
    to ``skipped`` with the reason in ``output``.
    """

    adapter: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @property
    def reason(self) -> str:
        """Failure or skip reason, empty on success."""
        if self.failed:
            return self.error or ""
        if self.skipped:
            return self.output
        return ""

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        action_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="skipped",
            output=reason,
            **kwargs,
        )
