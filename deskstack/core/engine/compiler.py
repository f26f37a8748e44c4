"""
Desired-state compiler — selection + environment → Plan.

Order of contribution, which is also install order:

    1. selected stacks, in registry order (not selection order, so the
       same set always yields the same plan)
    2. core bundle
    3. hardware gates whose condition holds, in registry order

Everything is a first-seen-wins union. Nothing is ever removed and no
diff is computed against an earlier run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from deskstack.core.models.environment import EnvironmentFacts
from deskstack.core.models.plan import Plan, SkippedSource
from deskstack.core.models.stack import GateCondition, StackRegistry

logger = logging.getLogger(__name__)

CORE_SOURCE = "core"


def gate_matches(condition: GateCondition, facts: EnvironmentFacts) -> bool:
    """True iff every field set on *condition* holds for *facts*."""
    if condition.gpu is not None and not facts.has_gpu(condition.gpu):
        return False
    if condition.virtualization is not None and facts.virtualization is not condition.virtualization:
        return False
    if condition.uefi is not None and facts.firmware_is_uefi != condition.uefi:
        return False
    return True


def compile_plan(
    selected: Iterable[str],
    facts: EnvironmentFacts,
    registry: StackRegistry,
) -> Plan:
    """Flatten the selected stacks into one deduplicated plan.

    Unknown stack ids are ignored with a warning; callers that want to
    reject them should check ``registry.unknown()`` first.

    Args:
        selected: StackIDs the user opted into.
        facts: Environment facts for this run.
        registry: The stack table.

    Returns:
        Plan. Never fails; an empty selection yields the core-only plan.
    """
    wanted = set(selected)
    plan = Plan(selected=[sid for sid in registry.stack_ids if sid in wanted])

    for stack_id in plan.selected:
        stack = registry.stacks[stack_id]
        if stack.uefi_only and not facts.firmware_is_uefi:
            logger.info("Stack '%s' needs UEFI firmware, skipping", stack_id)
            plan.skipped.append(SkippedSource(stack_id, "requires UEFI firmware"))
            continue
        plan.add_bundle(stack, stack_id)
        for directive in stack.extensions:
            plan.add_extension(directive)

    plan.add_bundle(registry.core, CORE_SOURCE)

    for unknown in sorted(wanted - set(plan.selected)):
        logger.warning("Unknown stack '%s' ignored", unknown)

    for gate in registry.hardware:
        if gate_matches(gate.when, facts):
            logger.debug("Hardware gate '%s' matched", gate.name)
            plan.add_bundle(gate, f"hw:{gate.name}" if gate.name else "hw")

    logger.info(
        "Compiled plan: %d actions, %d apps, %d extensions from %s",
        plan.total_actions, len(plan.apps), len(plan.extensions),
        ", ".join(plan.selected) or "core only",
    )
    return plan
