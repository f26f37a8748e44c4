"""
Extension state reconciler — merge desired enable/disable into the
persisted pair without clobbering entries someone else wrote.

Pure: takes the current lists and the desired changes, returns a new
ExtensionState. The executor does the read-before / write-after.

Rules:
    enabled'  = (enabled − (to_disable − to_enable)) ∪ to_enable
    disabled' = ((disabled − to_enable) ∪ to_disable) − enabled'

to_enable wins over to_disable for the same id. The final subtraction
also heals a stale overlap written by another tool, keeping the
enabled side (identifiers outside to_disable are never dropped from
enabled).

Order of the existing lists is preserved; new ids are appended in the
order given.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from deskstack.core.models.extension import ExtensionState

logger = logging.getLogger(__name__)


def _ordered_unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def reconcile(
    current_enabled: Iterable[str],
    current_disabled: Iterable[str],
    to_enable: Iterable[str] = (),
    to_disable: Iterable[str] = (),
) -> ExtensionState:
    """Compute the new enabled/disabled lists.

    Guarantees, for all inputs:
        - the two output lists are disjoint
        - every id in to_enable is enabled
        - every id in to_disable but not to_enable is disabled
        - applying the same desired lists to the output changes nothing
    """
    enabled = _ordered_unique(current_enabled)
    disabled = _ordered_unique(current_disabled)
    want_on = _ordered_unique(to_enable)
    want_on_set = set(want_on)
    want_off = [u for u in _ordered_unique(to_disable) if u not in want_on_set]
    want_off_set = set(want_off)

    conflicts = want_on_set & set(to_disable)
    if conflicts:
        logger.warning("Extensions both enabled and disabled, enable wins: %s", sorted(conflicts))

    new_enabled = [u for u in enabled if u not in want_off_set]
    new_enabled += [u for u in want_on if u not in new_enabled]
    enabled_set = set(new_enabled)

    new_disabled = [u for u in disabled if u not in want_on_set]
    new_disabled += [u for u in want_off if u not in new_disabled]
    new_disabled = [u for u in new_disabled if u not in enabled_set]

    return ExtensionState(enabled=new_enabled, disabled=new_disabled)


def diff(before: ExtensionState, after: ExtensionState) -> dict[str, list[str]]:
    """What changed between two states, for logging and the report."""
    return {
        "enabled": [u for u in after.enabled if u not in before.enabled_set],
        "unenabled": [u for u in before.enabled if u not in after.enabled_set],
        "disabled": [u for u in after.disabled if u not in before.disabled_set],
        "undisabled": [u for u in before.disabled if u not in after.disabled_set],
    }
