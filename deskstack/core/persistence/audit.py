"""
Audit ledger — append-only run history.

Every run (including dry runs) appends one NDJSON line to
``<state dir>/audit.ndjson``. Entries are never rewritten.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from deskstack.core.context import get_state_dir

logger = logging.getLogger(__name__)

AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """One run, as recorded in the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    operation_type: str = ""       # run, dry-run

    selected: list[str] = Field(default_factory=list)
    effective_boot_mode: str | None = None

    status: str = ""               # ok, partial, failed
    actions_total: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    actions_skipped: int = 0

    failures: list[str] = Field(default_factory=list)


class AuditWriter:
    """Append-only ledger writer.

    Each call to write() appends a single JSON line. The file and its
    directory are created on first write.
    """

    def __init__(self, path: Path | None = None):
        self._path = path or get_state_dir() / AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append *entry*. A write error is logged, never raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)
            return
        logger.debug("Audit entry written: %s/%s", entry.operation_type, entry.operation_id)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)
        return entries

    def read_recent(self, n: int = 10) -> list[AuditEntry]:
        return self.read_all()[-n:]
