"""Adapters — bindings for every external collaborator.

Public re-exports for convenient access.
"""

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.adapters.mock import MockAdapter
from deskstack.adapters.registry import AdapterRegistry


def build_registry(mock_mode: bool = False, default_timeout: int = 120) -> AdapterRegistry:
    """A registry with every real adapter registered."""
    from deskstack.adapters.boot.refind import RefindAdapter
    from deskstack.adapters.desktop.extensions import GnomeExtensionsAdapter
    from deskstack.adapters.desktop.gsettings import GsettingsAdapter
    from deskstack.adapters.net.http import HttpAdapter
    from deskstack.adapters.shell.command import ShellCommandAdapter
    from deskstack.adapters.shell.filesystem import FilesystemAdapter
    from deskstack.adapters.system.apt import AptAdapter
    from deskstack.adapters.system.flatpak import FlatpakAdapter
    from deskstack.adapters.system.fwupd import FwupdAdapter
    from deskstack.adapters.system.systemd import SystemdAdapter

    registry = AdapterRegistry(mock_mode=mock_mode, default_timeout=default_timeout)
    for adapter in (
        AptAdapter(),
        FlatpakAdapter(),
        SystemdAdapter(),
        FwupdAdapter(),
        GsettingsAdapter(),
        GnomeExtensionsAdapter(),
        HttpAdapter(),
        RefindAdapter(),
        FilesystemAdapter(),
        ShellCommandAdapter(),
    ):
        registry.register(adapter)
    return registry


__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "build_registry",
]
