"""Profile and stack-registry loading."""

from deskstack.core.config.loader import ConfigError, find_profile_file, load_profile
from deskstack.core.config.stack_loader import bundled_registry, load_registry

__all__ = [
    "ConfigError",
    "bundled_registry",
    "find_profile_file",
    "load_profile",
    "load_registry",
]
