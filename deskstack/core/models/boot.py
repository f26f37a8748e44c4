"""
Boot presentation models.

The effective mode after degradation is a BootMode too; degradation
only ever re-selects among the same three values.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class BootMode(str, Enum):
    SINGLE = "single"        # primary OS only
    DUAL = "dual"            # primary + secondary OS
    SHOW_ALL = "show_all"    # everything the boot manager finds


class BootRequest(BaseModel):
    """What the user asked for, plus where the ESP lives."""

    mode: BootMode = BootMode.DUAL
    esp_path: str = "/boot/efi"
    theme_url: str = ""


class BootOutcome(BaseModel):
    """Degraded-but-successful outcomes are surfaced through this."""

    requested: BootMode
    effective: BootMode
    config_path: str = ""
    backup_path: str = ""
    mok_enrollment_required: bool = False

    @property
    def degraded(self) -> bool:
        return self.requested is not self.effective
