"""
Profile model — the user's provisioning preferences.

Loaded from ``deskstack.yml``. Every field has a default so a missing
profile file is equivalent to an empty one.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from deskstack.core.models.boot import BootRequest
from deskstack.core.models.stack import ExtensionDirective


class FlatpakRemote(BaseModel):
    name: str = "flathub"
    url: str = "https://flathub.org/repo/flathub.flatpakrepo"


class ExtensionPreferences(BaseModel):
    enable: list[ExtensionDirective] = Field(default_factory=list)
    disable: list[str] = Field(default_factory=list)   # uuids


class Appearance(BaseModel):
    """Desktop look. Empty strings mean "leave as is"."""

    color_scheme: str = "prefer-dark"
    gtk_theme: str = "Yaru-dark"
    accent_color: str = ""
    power_profile: str = ""


class Timeouts(BaseModel):
    """Seconds allowed per external call, by kind."""

    package: int = 900
    service: int = 60
    network: int = 30
    command: int = 120


class Profile(BaseModel):
    """Root of ``deskstack.yml``."""

    stacks: list[str] | None = None   # None → registry defaults
    upgrade: bool = True
    flatpak_remote: FlatpakRemote = Field(default_factory=FlatpakRemote)
    extensions: ExtensionPreferences = Field(default_factory=ExtensionPreferences)
    boot: BootRequest = Field(default_factory=BootRequest)
    appearance: Appearance = Field(default_factory=Appearance)
    timeouts: Timeouts = Field(default_factory=Timeouts)
    notes_path: str = "~/Desktop/POST_INSTALL_DESKSTACK.txt"
