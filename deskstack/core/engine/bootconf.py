"""
Boot configuration generator — requested mode + loader presence →
(effective mode, config text).

Degradation is a one-way chain, applied in this order:

    DUAL   without a secondary OS loader  → SINGLE
    SINGLE without a primary OS loader    → SHOW_ALL

SHOW_ALL is never degraded and nothing is ever upgraded. Each effective
mode selects one fixed block of the bundled refind.conf template; no
other per-host value is substituted.

The text is returned, not written. Writing with a backup is the
executor's job.
"""

from __future__ import annotations

import logging

from deskstack.core.models.boot import BootMode
from deskstack.core.models.environment import BootLoaderPresence
from deskstack.core.services.templates import render_template

logger = logging.getLogger(__name__)

REFIND_TEMPLATE = "refind/refind.conf"
THEME_TEMPLATE = "refind/theme.conf"


def degrade(requested: BootMode, presence: BootLoaderPresence) -> BootMode:
    """Apply the fallback chain. Total over all inputs."""
    effective = requested
    if effective is BootMode.DUAL and not presence.has_secondary_os_loader:
        effective = BootMode.SINGLE
    if effective is BootMode.SINGLE and not presence.has_primary_os_loader:
        effective = BootMode.SHOW_ALL
    return effective


def render_boot_config(mode: BootMode) -> str:
    """The fixed template for one effective mode."""
    flags = {m.value: m is mode for m in BootMode}
    return render_template(REFIND_TEMPLATE, flags=flags)


def generate(requested: BootMode, presence: BootLoaderPresence) -> tuple[BootMode, str]:
    """Degrade *requested* against *presence* and render its config.

    Returns:
        (effective mode, refind.conf text)
    """
    effective = degrade(requested, presence)
    if effective is not requested:
        logger.info("Boot mode degraded: %s → %s", requested.value, effective.value)
    return effective, render_boot_config(effective)


def fallback_theme() -> str:
    """Bundled theme.conf, used when the theme download fails."""
    return render_template(THEME_TEMPLATE)
