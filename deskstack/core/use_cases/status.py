"""
Status use case — last run summary plus recent history.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from deskstack.core.context import get_state_dir
from deskstack.core.models.state import ProvisionState
from deskstack.core.persistence.audit import AuditEntry, AuditWriter
from deskstack.core.persistence.state_file import default_state_path, load_state


@dataclass
class StatusResult:
    state: ProvisionState | None = None
    history: list[AuditEntry] = field(default_factory=list)
    state_dir: str = ""

    @property
    def has_run(self) -> bool:
        return bool(self.state and self.state.last_run.operation_id)

    def to_dict(self) -> dict:
        return {
            "state_dir": self.state_dir,
            "state": self.state.model_dump(mode="json") if self.state else None,
            "history": [e.model_dump(mode="json") for e in self.history],
        }


def get_status(history: int = 5) -> StatusResult:
    """Read current.json and the last *history* ledger entries."""
    return StatusResult(
        state=load_state(default_state_path()),
        history=AuditWriter().read_recent(history),
        state_dir=str(get_state_dir()),
    )
