"""
Configuration loader — reads deskstack.yml into a Profile.

The profile is optional. When none is found the defaults apply, so
``deskstack run -s gaming`` works on a fresh machine with no setup.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from deskstack.core.models.profile import Profile

logger = logging.getLogger(__name__)

# Default config filename
PROFILE_FILE = "deskstack.yml"


class ConfigError(Exception):
    """Raised when a profile or registry file is invalid or unreadable."""


def user_config_dir() -> Path:
    """``~/.config/deskstack`` (honours XDG_CONFIG_HOME)."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "deskstack"


def find_profile_file(start_dir: Path | None = None) -> Path | None:
    """Search for deskstack.yml starting from the given directory, walking up.

    Falls back to the user config directory.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to deskstack.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / PROFILE_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    fallback = user_config_dir() / PROFILE_FILE
    if fallback.is_file():
        return fallback
    return None


def load_yaml_mapping(path: Path) -> dict:
    """Read *path* and return its top-level YAML mapping.

    Raises:
        ConfigError: If the file cannot be read or is not a mapping.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def load_profile(path: Path | None = None, search: bool = True) -> Profile:
    """Load and validate the provisioning profile.

    Args:
        path: Explicit path to deskstack.yml.
        search: When no path is given, look for one (cwd upwards, then
            the user config dir). When False, return defaults.

    Returns:
        Validated Profile model (defaults if no file exists).

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None and search:
        path = find_profile_file()

    if path is None:
        logger.debug("No %s found — using defaults", PROFILE_FILE)
        return Profile()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading profile from %s", path)
    data = load_yaml_mapping(path)

    # The YAML may wrap everything under a "profile" key or be flat
    if isinstance(data.get("profile"), dict):
        data = data["profile"]

    try:
        profile = Profile.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid profile in {path}: {e}") from e

    logger.info("Loaded profile from %s", path)
    return profile
