"""
ProvisionState — what the last run did.

Serialized to ``<state dir>/current.json`` after every run. It is a
record, not a source of truth: the package database, the shell
settings store and the ESP remain authoritative, and deleting this
file only loses history.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class PhaseRecord(BaseModel):
    """Per-phase counts for the last run."""

    name: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class RunRecord(BaseModel):
    """Summary of the last run."""

    operation_id: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""  # ok, partial, failed
    selected: list[str] = Field(default_factory=list)
    requested_boot_mode: str | None = None
    effective_boot_mode: str | None = None
    phases: list[PhaseRecord] = Field(default_factory=list)
    failures: list[str] = Field(default_factory=list)


class ProvisionState(BaseModel):
    """Root state model — serialized to current.json."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Environment (informational) ──────────────────────────────
    environment: dict[str, Any] = Field(default_factory=dict)

    # ── Extensions this tool has enabled across runs ─────────────
    managed_extensions: list[str] = Field(default_factory=list)

    # ── Last run ─────────────────────────────────────────────────
    last_run: RunRecord = Field(default_factory=RunRecord)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def remember_extensions(self, uuids: list[str]) -> None:
        for uuid in uuids:
            if uuid not in self.managed_extensions:
                self.managed_extensions.append(uuid)
