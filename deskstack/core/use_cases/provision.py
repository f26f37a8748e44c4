"""
Provision use case — the full vertical slice of a run.

    load profile + registry → validate selection → preflight
    → classify environment → compile plan → execute → persist

Config problems and precondition failures come back as
``ProvisionResult.error`` with nothing mutated; everything after
preflight is per-item and lands in the report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from deskstack.adapters import build_registry
from deskstack.adapters.registry import AdapterRegistry
from deskstack.core.config.loader import ConfigError, load_profile
from deskstack.core.config.stack_loader import bundled_registry, load_registry
from deskstack.core.engine.compiler import compile_plan
from deskstack.core.engine.executor import Executor, RunReport, write_audit_entries
from deskstack.core.engine.preflight import PreconditionError, run_preflight
from deskstack.core.models.boot import BootMode, BootRequest
from deskstack.core.models.environment import EnvironmentFacts
from deskstack.core.models.plan import Plan
from deskstack.core.models.profile import Profile
from deskstack.core.models.stack import StackRegistry
from deskstack.core.models.state import PhaseRecord, RunRecord
from deskstack.core.persistence.audit import AuditWriter
from deskstack.core.persistence.state_file import load_state, save_state
from deskstack.core.services.environment import classify

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Outcome of planning (and optionally running) a provisioning pass."""

    profile: Profile | None = None
    registry: StackRegistry | None = None
    facts: EnvironmentFacts | None = None
    plan: Plan | None = None
    boot_request: BootRequest | None = None
    report: RunReport | None = None
    error: str | None = None
    error_kind: str = ""   # config, selection, precondition

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            return result
        if self.facts:
            result["environment"] = self.facts.to_dict()
        if self.plan:
            result["plan"] = self.plan.to_dict()
        result["boot"] = self.boot_request.model_dump(mode="json") if self.boot_request else None
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def resolve_selection(
    requested: list[str] | None,
    profile: Profile,
    registry: StackRegistry,
) -> list[str]:
    """CLI selection > profile ``stacks`` > registry defaults."""
    if requested:
        return list(requested)
    if profile.stacks is not None:
        return list(profile.stacks)
    return registry.default_selection


def boot_request_for(
    plan: Plan,
    registry: StackRegistry,
    profile: Profile,
    mode: BootMode | None = None,
) -> BootRequest | None:
    """Boot configuration is requested iff a UEFI-only stack made it into the plan."""
    skipped = {s.source for s in plan.skipped}
    wanted = any(
        registry.stacks[sid].uefi_only and sid not in skipped
        for sid in plan.selected
    )
    if not wanted:
        return None
    request = profile.boot
    if mode is not None:
        request = request.model_copy(update={"mode": mode})
    return request


def prepare(
    stacks: list[str] | None = None,
    config_path: Path | None = None,
    registry_path: Path | None = None,
    boot_mode: BootMode | None = None,
    facts: EnvironmentFacts | None = None,
) -> ProvisionResult:
    """Load config, classify the machine and compile the plan. Mutates nothing."""
    result = ProvisionResult()

    try:
        profile = load_profile(config_path)
        registry = load_registry(registry_path) if registry_path else bundled_registry()
    except ConfigError as e:
        result.error = str(e)
        result.error_kind = "config"
        return result
    result.profile = profile
    result.registry = registry

    selection = resolve_selection(stacks, profile, registry)
    unknown = registry.unknown(selection)
    if unknown:
        result.error = (
            f"Unknown stack(s): {', '.join(unknown)}. "
            f"Known: {', '.join(registry.stack_ids)}"
        )
        result.error_kind = "selection"
        return result

    result.facts = facts or classify(esp_path=profile.boot.esp_path)
    result.plan = compile_plan(selection, result.facts, registry)
    result.boot_request = boot_request_for(result.plan, registry, profile, boot_mode)
    return result


def run_provision(
    stacks: list[str] | None = None,
    config_path: Path | None = None,
    registry_path: Path | None = None,
    boot_mode: BootMode | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    sudo_password: str = "",
    adapters: AdapterRegistry | None = None,
    facts: EnvironmentFacts | None = None,
) -> ProvisionResult:
    """Plan and execute a provisioning run.

    Args:
        stacks: StackIDs to apply (None: profile, then registry defaults).
        config_path: Explicit deskstack.yml.
        registry_path: Alternative stack registry file.
        boot_mode: Overrides the profile's boot mode.
        dry_run: Validate everything, execute only read-only operations.
        mock_mode: Route every action to a mock (no system access).
        sudo_password: Held in memory and piped to sudo per call.
        adapters: Pre-configured adapter registry (tests).
        facts: Pre-computed environment facts (tests).

    Returns:
        ProvisionResult. ``error`` is set only for config, selection
        and precondition failures; nothing is mutated in those cases.
    """
    result = prepare(stacks, config_path, registry_path, boot_mode, facts)
    if result.error:
        return result
    profile = result.profile
    assert profile is not None and result.plan is not None and result.facts is not None

    if not mock_mode:
        try:
            run_preflight(sudo_password=sudo_password, skip_sudo=dry_run)
        except PreconditionError as e:
            result.error = str(e)
            result.error_kind = "precondition"
            return result

    if adapters is None:
        adapters = build_registry(mock_mode=mock_mode, default_timeout=profile.timeouts.command)
    adapters.set_sudo_password(sudo_password)

    executor = Executor(adapters, result.facts, profile=profile, dry_run=dry_run)
    report = executor.run(result.plan, profile.extensions, result.boot_request)
    result.report = report

    persist(report, result.facts)
    return result


def persist(report: RunReport, facts: EnvironmentFacts) -> None:
    """Write current.json and append to the audit ledger."""
    state = load_state()
    state.environment = facts.to_dict()
    if not report.dry_run:
        state.remember_extensions(report.extensions_enabled)
    state.last_run = RunRecord(
        operation_id=report.operation_id,
        started_at=report.started_at,
        ended_at=report.ended_at,
        status=report.status,
        selected=list(report.selected),
        requested_boot_mode=report.boot.requested.value if report.boot else None,
        effective_boot_mode=report.boot.effective.value if report.boot else None,
        phases=[
            PhaseRecord(name=phase, **report.phase_counts(phase))
            for phase in report.phase_receipts
        ],
        failures=[f"{r.action_id}: {r.error}" for r in report.failures],
    )
    try:
        save_state(state)
    except OSError as e:
        logger.error("Could not save run state: %s", e)

    write_audit_entries(report, AuditWriter())
