"""
Extension state — the persisted enabled/disabled pair.

The desktop shell stores these as two string arrays. Order is kept
(the shell loads extensions in list order) but membership is what the
reconciler reasons about.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ExtensionState(BaseModel):
    """Snapshot of ``enabled-extensions`` and ``disabled-extensions``."""

    enabled: list[str] = Field(default_factory=list)
    disabled: list[str] = Field(default_factory=list)

    @property
    def enabled_set(self) -> set[str]:
        return set(self.enabled)

    @property
    def disabled_set(self) -> set[str]:
        return set(self.disabled)

    @property
    def consistent(self) -> bool:
        """No identifier is both enabled and disabled."""
        return not (self.enabled_set & self.disabled_set)


class ExtensionMetadata(BaseModel):
    """What the extension index returns for one registry id."""

    uuid: str
    download_url: str
    name: str = ""
    version: int | None = None
