"""
Stack loader — loads the stack registry from YAML.

The registry ships with the package as ``deskstack/data/stacks.yml``.
Its top-level keys are::

    core:       actions every run gets
    stacks:     StackID → stack definition
    hardware:   environment-gated additions

Stack entries get their ``name`` from their key, so the YAML does not
repeat it.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from deskstack.core.config.loader import ConfigError, load_yaml_mapping
from deskstack.core.models.stack import StackRegistry

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent.parent.parent / "data"
DEFAULT_REGISTRY_FILE = DATA_DIR / "stacks.yml"


def load_registry(path: Path | None = None) -> StackRegistry:
    """Load and validate a stack registry file.

    Args:
        path: Registry YAML (default: the bundled one).

    Raises:
        ConfigError: If the file is unreadable or does not validate.
    """
    path = path or DEFAULT_REGISTRY_FILE
    data = load_yaml_mapping(path)

    stacks = data.get("stacks") or {}
    if not isinstance(stacks, dict):
        raise ConfigError(f"'stacks' must be a mapping in {path}")
    for stack_id, entry in stacks.items():
        if entry is None:
            stacks[stack_id] = entry = {}
        if isinstance(entry, dict):
            entry.setdefault("name", stack_id)
    data["stacks"] = stacks

    try:
        registry = StackRegistry.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid stack registry {path}: {e}") from e

    for stack_id, stack in registry.stacks.items():
        if stack.name != stack_id:
            raise ConfigError(
                f"Stack key '{stack_id}' does not match its name '{stack.name}' in {path}"
            )

    logger.debug("Loaded %d stacks: %s", len(registry.stacks), registry.stack_ids)
    return registry


@lru_cache(maxsize=1)
def bundled_registry() -> StackRegistry:
    """The registry shipped with this build (loaded once per process)."""
    return load_registry(DEFAULT_REGISTRY_FILE)
