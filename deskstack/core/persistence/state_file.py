"""
State file persistence — atomic read/write for ProvisionState.

The last-run summary lives in ``<state dir>/current.json``. Writes go
to a temp file in the same directory and are renamed into place, so a
crash mid-write leaves the previous file intact.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from pydantic import ValidationError

from deskstack.core.context import get_state_dir
from deskstack.core.models.state import ProvisionState

logger = logging.getLogger(__name__)

STATE_FILE = "current.json"


def default_state_path(state_dir: Path | None = None) -> Path:
    """``current.json`` inside *state_dir* (default: the process state dir)."""
    return (state_dir or get_state_dir()) / STATE_FILE


def load_state(path: Path | None = None) -> ProvisionState:
    """Load the last-run state.

    Returns:
        ProvisionState. A missing or unreadable file yields a fresh state;
        the file is history, not a source of truth.
    """
    path = path or default_state_path()
    if not path.is_file():
        logger.info("No state file at %s, starting fresh", path)
        return ProvisionState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = ProvisionState.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Cannot load state from %s: %s, starting fresh", path, e)
        return ProvisionState()
    logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
    return state


def save_state(state: ProvisionState, path: Path | None = None) -> Path:
    """Write *state* atomically. Returns the path written."""
    path = path or default_state_path()
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
    logger.debug("State saved to %s", path)
    return path
