"""
Detect use case — what deskstack sees on this machine.

Read-only: classifies the environment, looks for OS loaders on the
ESP and checks which external tools are on PATH.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from deskstack.adapters import build_registry
from deskstack.core.config.loader import ConfigError, load_profile
from deskstack.core.models.environment import BootLoaderPresence, EnvironmentFacts
from deskstack.core.services.environment import classify, probe_boot_loaders


@dataclass
class DetectResult:
    facts: EnvironmentFacts | None = None
    presence: BootLoaderPresence | None = None
    tools: dict[str, bool] = field(default_factory=dict)
    esp_path: str = ""
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "environment": self.facts.to_dict() if self.facts else {},
            "boot_loaders": self.presence.model_dump() if self.presence else None,
            "esp_path": self.esp_path,
            "tools": dict(self.tools),
        }


def run_detect(config_path: Path | None = None, facts: EnvironmentFacts | None = None) -> DetectResult:
    """Classify this machine.

    The ESP is usually root-only, so loader detection here is a best
    effort without sudo; an unreadable ESP reports no loaders.
    """
    result = DetectResult()
    try:
        profile = load_profile(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.esp_path = profile.boot.esp_path
    result.facts = facts or classify(esp_path=profile.boot.esp_path)
    if result.facts.firmware_is_uefi and result.facts.esp_mounted:
        result.presence = probe_boot_loaders(profile.boot.esp_path)

    status = build_registry().adapter_status()
    result.tools = {name: info["available"] for name, info in status.items()}
    return result
