"""
Run context — where this process keeps its state.

The state directory is resolved once at startup by the CLI and read
by the persistence layer:

    - CLI:    main.py  → context.set_state_dir(path)
    - Tests:  conftest → context.set_state_dir(tmp_path)

Resolution order: explicit set_state_dir() > DESKSTACK_STATE_DIR >
$XDG_STATE_HOME/deskstack > ~/.local/state/deskstack.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


_state_dir: Optional[Path] = None


def set_state_dir(path: Path | None) -> None:
    """Register the state directory for the current process."""
    global _state_dir
    _state_dir = path


def get_state_dir() -> Path:
    """Return the state directory, resolving defaults when unset."""
    if _state_dir is not None:
        return _state_dir
    env = os.environ.get("DESKSTACK_STATE_DIR")
    if env:
        return Path(env)
    xdg = os.environ.get("XDG_STATE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "state"
    return base / "deskstack"
