"""
Engine executor — applies a compiled Plan, phase by phase.

Phases run in a fixed order and items within a phase run one at a
time:

    1. packages           debconf preseed, foreign architectures, index
                          update, optional upgrade, then every package
    2. apps               sandboxed-app remote, then every app
    3. extensions_stage   check local extensions, resolve + download
                          (parallel), install (sequential), then
                          force-disable everything staged plus the
                          requested disables
    4. configure          config templates, then service enablement
    5. boot               boot manager install, config generation + write
    6. extensions_enable  apply extension settings while still disabled,
                          reconcile the persisted lists with the
                          extensions whose settings all applied, enable
                          in the live session
    7. finalize           appearance, app/firmware refresh, package
                          cleanup, post-install notes

Every item yields a Receipt. A failed item is recorded and the run
moves on; nothing in here raises for a per-item failure.
"""

from __future__ import annotations

import logging
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from deskstack.adapters.registry import AdapterRegistry
from deskstack.core.engine import bootconf
from deskstack.core.engine.reconciler import diff, reconcile
from deskstack.core.models.action import Action, Receipt
from deskstack.core.models.boot import BootOutcome, BootRequest
from deskstack.core.models.environment import EnvironmentFacts
from deskstack.core.models.extension import ExtensionState
from deskstack.core.models.plan import Plan
from deskstack.core.models.profile import ExtensionPreferences, Profile
from deskstack.core.models.stack import ExtensionDirective
from deskstack.core.persistence.audit import AuditEntry, AuditWriter
from deskstack.core.services import extension_index
from deskstack.core.services.environment import probe_boot_loaders
from deskstack.core.services.templates import (
    TemplateNotFound,
    expand_dest,
    render_template,
)

logger = logging.getLogger(__name__)

PHASES = (
    "packages",
    "apps",
    "extensions_stage",
    "configure",
    "boot",
    "extensions_enable",
    "finalize",
)

SHELL_SCHEMA = "org.gnome.shell"
INTERFACE_SCHEMA = "org.gnome.desktop.interface"
NOTES_TEMPLATE = "notes/post_install.txt"
USER_EXTENSIONS_DIR = Path("~/.local/share/gnome-shell/extensions")


# ── Report ─────────────────────────────────────────────────────


@dataclass
class RunReport:
    """Result of one run: every attempted item and its outcome."""

    operation_id: str = ""
    selected: list[str] = field(default_factory=list)
    dry_run: bool = False
    started_at: str = ""
    ended_at: str = ""
    phase_receipts: dict[str, list[Receipt]] = field(
        default_factory=lambda: {p: [] for p in PHASES},
    )
    skipped_sources: list[dict[str, str]] = field(default_factory=list)
    boot: BootOutcome | None = None
    extensions_enabled: list[str] = field(default_factory=list)
    extension_changes: dict[str, list[str]] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)

    @property
    def receipts(self) -> list[Receipt]:
        return [r for phase in PHASES for r in self.phase_receipts[phase]]

    @property
    def total(self) -> int:
        return len(self.receipts)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.receipts if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.receipts if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.receipts if r.skipped)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    @property
    def failures(self) -> list[Receipt]:
        return [r for r in self.receipts if r.failed]

    def phase_counts(self, phase: str) -> dict[str, int]:
        receipts = self.phase_receipts[phase]
        return {
            "total": len(receipts),
            "succeeded": sum(1 for r in receipts if r.ok),
            "failed": sum(1 for r in receipts if r.failed),
            "skipped": sum(1 for r in receipts if r.skipped),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "selected": list(self.selected),
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "skipped_sources": list(self.skipped_sources),
            "boot": (
                {**self.boot.model_dump(mode="json"), "degraded": self.boot.degraded}
                if self.boot else None
            ),
            "extensions_enabled": list(self.extensions_enabled),
            "extension_changes": dict(self.extension_changes),
            "notes": list(self.notes),
            "phases": {
                phase: {
                    **self.phase_counts(phase),
                    "receipts": [r.model_dump(mode="json") for r in self.phase_receipts[phase]],
                }
                for phase in PHASES
            },
        }


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"


def merge_directives(
    plan_extensions: list[ExtensionDirective],
    preferred: list[ExtensionDirective],
) -> list[ExtensionDirective]:
    """Stack-contributed directives first, then profile ones; dedup by label."""
    merged: list[ExtensionDirective] = []
    seen: set[str] = set()
    for directive in [*plan_extensions, *preferred]:
        if directive.label not in seen:
            seen.add(directive.label)
            merged.append(directive)
    return merged


# ── Executor ───────────────────────────────────────────────────


class Executor:
    """Runs one Plan through an AdapterRegistry.

    Args:
        registry: Adapter dispatch (real, or mock mode).
        facts: Environment facts the plan was compiled against.
        profile: Timeouts, upgrade flag, remote, appearance, notes path.
        dry_run: Validate everything, execute only read-only operations.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        facts: EnvironmentFacts,
        profile: Profile | None = None,
        dry_run: bool = False,
    ):
        self.registry = registry
        self.facts = facts
        self.profile = profile or Profile()
        self.dry_run = dry_run
        self.report = RunReport(dry_run=dry_run)
        self._extension_uuids: dict[str, str] = {}   # directive label → uuid

    # ── Dispatch helpers ───────────────────────────────────────

    def _do(
        self,
        phase: str,
        adapter: str,
        operation: str,
        target: str = "",
        *,
        timeout: int | None = None,
        record: bool = True,
        **params: Any,
    ) -> Receipt:
        action = Action(
            id=f"{phase}:{operation}:{target}" if target else f"{phase}:{operation}",
            adapter=adapter,
            operation=operation,
            phase=phase,
            target=target,
            params=params,
        )
        receipt = self.registry.execute_action(
            action,
            dry_run=self.dry_run,
            timeout=timeout or self.profile.timeouts.command,
        )
        if record:
            self._record(phase, receipt)
        return receipt

    def _record(self, phase: str, receipt: Receipt) -> None:
        self.report.phase_receipts[phase].append(receipt)
        marker = "✓" if receipt.ok else "✗" if receipt.failed else "⊘"
        if receipt.failed:
            logger.warning("%s %s → %s", marker, receipt.action_id, receipt.error)
        else:
            logger.info("%s %s", marker, receipt.action_id)

    def _note(self, phase: str, action_id: str, reason: str, adapter: str = "engine") -> None:
        """Record a Skipped outcome for something the engine chose not to attempt."""
        self._record(phase, Receipt.skip(adapter, action_id, reason=reason))

    def _fail(self, phase: str, action_id: str, error: str, adapter: str = "engine") -> None:
        self._record(phase, Receipt.failure(adapter, action_id, error=error))

    # ── Entry point ────────────────────────────────────────────

    def run(
        self,
        plan: Plan,
        extension_directives: ExtensionPreferences | None = None,
        boot_request: BootRequest | None = None,
        operation_id: str | None = None,
    ) -> RunReport:
        """Apply *plan*. Never raises for an individual item.

        Args:
            plan: Output of ``compile_plan``.
            extension_directives: Extra enable directives and uuids to
                disable, on top of what the plan's stacks contribute.
            boot_request: None when boot configuration was not requested.
            operation_id: Reuse an id (tests); generated when omitted.
        """
        prefs = extension_directives or ExtensionPreferences()
        report = self.report
        report.operation_id = operation_id or generate_operation_id()
        report.selected = list(plan.selected)
        report.started_at = datetime.now(UTC).isoformat()
        report.skipped_sources = [
            {"source": s.source, "reason": s.reason} for s in plan.skipped
        ]
        for skipped in plan.skipped:
            self._note("packages", f"stack:{skipped.source}", skipped.reason)

        directives = merge_directives(plan.extensions, prefs.enable)
        to_disable = list(dict.fromkeys(prefs.disable))

        logger.info(
            "Run %s: %d packages, %d apps, %d extensions%s",
            report.operation_id, len(plan.packages), len(plan.apps),
            len(directives), " (dry run)" if self.dry_run else "",
        )

        self.phase_packages(plan)
        self.phase_apps(plan)
        to_enable = self.phase_extensions_stage(directives, to_disable)
        self.phase_configure(plan)
        self.phase_boot(boot_request)
        self.phase_extensions_enable(directives, to_enable, to_disable)
        self.phase_finalize(plan)

        report.ended_at = datetime.now(UTC).isoformat()
        logger.info(
            "Run %s finished: %s (%d ok, %d failed, %d skipped)",
            report.operation_id, report.status,
            report.succeeded, report.failed, report.skipped,
        )
        return report

    # ── Phase 1: packages ──────────────────────────────────────

    def phase_packages(self, plan: Plan) -> None:
        phase = "packages"
        timeout = self.profile.timeouts.package

        if plan.debconf:
            self._do(phase, "apt", "preseed", "debconf", lines=list(plan.debconf))
        for arch in plan.architectures:
            self._do(phase, "apt", "add-architecture", arch)
        self._do(phase, "apt", "update", timeout=timeout)
        if self.profile.upgrade:
            self._do(phase, "apt", "upgrade", timeout=timeout)

        for package in plan.packages:
            self._do(phase, "apt", "install", package, timeout=timeout)

    # ── Phase 2: sandboxed apps ────────────────────────────────

    def phase_apps(self, plan: Plan) -> None:
        phase = "apps"
        if not plan.apps:
            return
        remote = self.profile.flatpak_remote
        added = self._do(
            phase, "flatpak", "add-remote", remote.name,
            timeout=self.profile.timeouts.network, url=remote.url,
        )
        for app in plan.apps:
            if added.failed:
                self._note(phase, f"{phase}:install:{app}", f"remote '{remote.name}' unavailable", "flatpak")
                continue
            self._do(
                phase, "flatpak", "install", app,
                timeout=self.profile.timeouts.package, remote=remote.name,
            )

    # ── Phase 3: extension install + disable ───────────────────

    def phase_extensions_stage(
        self,
        directives: list[ExtensionDirective],
        to_disable: list[str],
    ) -> list[str]:
        """Resolve, stage and install extensions, then disable them.

        Everything staged here stays disabled until phase 6 has applied
        its settings.

        Returns:
            uuids that are installed and should be enabled in phase 6.
        """
        phase = "extensions_stage"
        to_enable: list[str] = []

        local = [d for d in directives if d.id is None]
        remote = [d for d in directives if d.id is not None]

        if local:
            to_enable += self._check_local_extensions(phase, local)
        if remote:
            to_enable += self._install_remote_extensions(phase, remote)

        staged = list(dict.fromkeys(to_enable))
        disable_now = staged + [u for u in to_disable if u not in staged]
        if disable_now:
            self._apply_state(phase, to_enable=(), to_disable=disable_now)
            for ext_uuid in disable_now:
                self._live_toggle(phase, "disable", ext_uuid)

        return staged

    def _check_local_extensions(self, phase: str, local: list[ExtensionDirective]) -> list[str]:
        """uuids of *local* that the shell reports as installed; the rest fail."""
        listing = self._do(phase, "gnome-extensions", "list")
        installed = listing.metadata.get("uuids") if listing.ok else None

        found = []
        for directive in local:
            self._extension_uuids[directive.label] = directive.uuid
            action_id = f"{phase}:installed:{directive.uuid}"
            if installed is None:
                self._fail(phase, action_id, "installed extensions could not be listed", "gnome-extensions")
            elif directive.uuid not in installed:
                self._fail(phase, action_id, "extension is not installed", "gnome-extensions")
            else:
                found.append(directive.uuid)
        return found

    def _install_remote_extensions(self, phase: str, remote: list[ExtensionDirective]) -> list[str]:
        version = self._do(phase, "gnome-extensions", "shell-version")
        major = version.metadata.get("major") if version.ok else None
        if not major:
            for directive in remote:
                self._fail(
                    phase, f"{phase}:info:{directive.id}",
                    "GNOME Shell version unknown; cannot pick an extension build",
                    "http",
                )
            return []

        network = self.profile.timeouts.network
        resolved = extension_index.resolve_all(
            self.registry, [d.id for d in remote], major,
            timeout=network, dry_run=self.dry_run,
        )

        metas = []
        for directive in remote:
            meta, receipt = resolved[directive.id]
            self._record(phase, receipt)
            if meta is not None:
                self._extension_uuids[directive.label] = meta.uuid
                metas.append(meta)

        installed: list[str] = []
        with tempfile.TemporaryDirectory(prefix="deskstack-ext-") as staging:
            downloads = extension_index.download_all(
                self.registry, metas, Path(staging),
                timeout=network, dry_run=self.dry_run,
            )
            for meta in metas:
                receipt = downloads[meta.uuid]
                self._record(phase, receipt)
                if not receipt.ok:
                    continue
                install = self._do(
                    phase, "gnome-extensions", "install", meta.uuid,
                    path=str(extension_index.staged_path(Path(staging), meta.uuid)),
                )
                if install.ok:
                    installed.append(meta.uuid)
        return installed

    # ── Extension state read-modify-write ──────────────────────

    def _read_state(self, phase: str) -> ExtensionState | None:
        values = {}
        for key in ("enabled-extensions", "disabled-extensions"):
            receipt = self._do(
                phase, "gsettings", "get-array", key,
                record=False, schema=SHELL_SCHEMA, key=key,
            )
            if not receipt.ok:
                self._record(phase, receipt)
                return None
            values[key] = receipt.metadata.get("values", [])
        return ExtensionState(
            enabled=values["enabled-extensions"],
            disabled=values["disabled-extensions"],
        )

    def _apply_state(self, phase: str, to_enable, to_disable) -> ExtensionState | None:
        """Read, reconcile, write back only what changed.

        Returns the new state, or None if the current state could not be
        read (nothing is written in that case).
        """
        before = self._read_state(phase)
        if before is None:
            return None
        after = reconcile(before.enabled, before.disabled, to_enable, to_disable)
        changes = diff(before, after)
        for kind, uuids in changes.items():
            if uuids:
                self.report.extension_changes.setdefault(kind, []).extend(uuids)

        for key, old, new in (
            ("disabled-extensions", before.disabled, after.disabled),
            ("enabled-extensions", before.enabled, after.enabled),
        ):
            if old != new:
                self._do(phase, "gsettings", "set-array", key, schema=SHELL_SCHEMA, key=key, value=new)
        return after

    def _live_toggle(self, phase: str, operation: str, ext_uuid: str) -> Receipt:
        """Mirror a persisted change into the running shell.

        Outside a graphical session this fails; the persisted lists
        already carry the change, so it becomes a skip.
        """
        receipt = self._do(phase, "gnome-extensions", operation, ext_uuid, record=False)
        if receipt.failed:
            receipt = Receipt.skip(
                receipt.adapter, receipt.action_id,
                reason=f"takes effect after next login ({receipt.error})",
            )
        self._record(phase, receipt)
        return receipt

    # ── Phase 4: templates + services ──────────────────────────

    def phase_configure(self, plan: Plan) -> None:
        phase = "configure"
        for action in plan.templates:
            action_id = f"{phase}:template:{action.target}"
            try:
                content = render_template(action.template)
            except TemplateNotFound as e:
                self._fail(phase, action_id, str(e), "filesystem")
                continue
            self._do(
                phase, "filesystem", "write", action.target,
                path=str(expand_dest(action.target)), content=content,
            )

        for service in plan.services:
            self._do(phase, "systemd", "enable", service, timeout=self.profile.timeouts.service)

    # ── Phase 5: boot ──────────────────────────────────────────

    def phase_boot(self, request: BootRequest | None) -> None:
        phase = "boot"
        if request is None:
            return
        if not self.facts.firmware_is_uefi:
            self._note(phase, f"{phase}:configure", "requires UEFI firmware")
            return
        if not self.facts.esp_mounted:
            self._note(phase, f"{phase}:configure", f"EFI system partition not mounted at {request.esp_path}")
            return

        esp = Path(request.esp_path)
        installed = self._do(phase, "refind", "install", str(esp), esp_path=str(esp))
        if installed.failed:
            self._note(phase, f"{phase}:write:refind.conf", "boot manager not installed")
            return

        presence = probe_boot_loaders(esp, is_file=self._esp_is_file)
        effective, text = bootconf.generate(request.mode, presence)

        refind_dir = esp / "EFI" / "refind"
        config_path = refind_dir / "refind.conf"
        written = self._do(
            phase, "filesystem", "write", str(config_path),
            path=str(config_path), content=text, needs_sudo=True,
        )

        self._write_theme(phase, request, refind_dir / "themes" / "deskstack" / "theme.conf")

        outcome = BootOutcome(
            requested=request.mode,
            effective=effective,
            config_path=str(config_path) if not written.failed else "",
            backup_path=written.metadata.get("backup", ""),
            mok_enrollment_required=self.facts.secure_boot_enabled,
        )
        self.report.boot = outcome
        if outcome.degraded:
            self.report.notes.append(
                f"Boot mode '{request.mode.value}' is not available on this machine; "
                f"using '{effective.value}'."
            )
        if outcome.mok_enrollment_required:
            self.report.notes.append(
                "Secure Boot is enabled: enroll the rEFInd key (MOK) on next reboot."
            )

    def _esp_is_file(self, path: Path) -> bool:
        receipt = self._do(
            "boot", "filesystem", "exists", str(path),
            record=False, path=str(path), needs_sudo=True,
        )
        return bool(receipt.metadata.get("exists", False))

    def _write_theme(self, phase: str, request: BootRequest, dest: Path) -> None:
        content = None
        if request.theme_url:
            with tempfile.TemporaryDirectory(prefix="deskstack-theme-") as staging:
                staged = Path(staging) / "theme.conf"
                fetched = self._do(
                    phase, "http", "download", request.theme_url,
                    timeout=self.profile.timeouts.network, dest=str(staged),
                )
                if fetched.ok and staged.is_file():
                    content = staged.read_text(encoding="utf-8")
        if content is None:
            if request.theme_url:
                logger.info("Theme fetch failed, using the bundled theme")
            content = bootconf.fallback_theme()
        self._do(
            phase, "filesystem", "write", str(dest),
            path=str(dest), content=content, needs_sudo=True,
        )

    # ── Phase 6: extension final enable ────────────────────────

    def phase_extensions_enable(
        self,
        directives: list[ExtensionDirective],
        to_enable: list[str],
        to_disable: list[str],
    ) -> None:
        phase = "extensions_enable"
        if not to_enable and not to_disable:
            return

        ready = self._apply_extension_settings(phase, directives, to_enable)
        state = self._apply_state(phase, to_enable=ready, to_disable=to_disable)
        if state is None:
            for ext_uuid in ready:
                self._note(phase, f"{phase}:enable:{ext_uuid}", "extension state unreadable; left unchanged")
            return

        for ext_uuid in ready:
            if ext_uuid in state.enabled_set:
                self._live_toggle(phase, "enable", ext_uuid)
                self.report.extensions_enabled.append(ext_uuid)

    def _apply_extension_settings(
        self,
        phase: str,
        directives: list[ExtensionDirective],
        to_enable: list[str],
    ) -> list[str]:
        """Write each extension's settings; return the uuids safe to enable.

        An extension with any failed setting stays disabled.
        """
        held: set[str] = set()
        for directive in directives:
            ext_uuid = self._extension_uuids.get(directive.label)
            if ext_uuid not in to_enable:
                continue
            schemadir = (USER_EXTENSIONS_DIR / ext_uuid / "schemas").expanduser()
            for setting in directive.settings:
                params: dict[str, Any] = {
                    "schema": setting.schema_id, "key": setting.key, "value": setting.value,
                }
                if schemadir.is_dir():
                    params["schemadir"] = str(schemadir)
                receipt = self._do(phase, "gsettings", "set", f"{ext_uuid}:{setting.key}", **params)
                if receipt.failed:
                    held.add(ext_uuid)

        for ext_uuid in (u for u in to_enable if u in held):
            self._note(phase, f"{phase}:enable:{ext_uuid}", "left disabled: a setting failed to apply")
        return [u for u in to_enable if u not in held]

    # ── Phase 7: finalize ──────────────────────────────────────

    def phase_finalize(self, plan: Plan) -> None:
        phase = "finalize"
        look = self.profile.appearance
        for key, value in (
            ("color-scheme", look.color_scheme),
            ("gtk-theme", look.gtk_theme),
            ("accent-color", look.accent_color),
        ):
            if value:
                self._do(phase, "gsettings", "set", key, schema=INTERFACE_SCHEMA, key=key, value=value)
        if look.power_profile:
            self._do(
                phase, "shell", "run", "power-profile",
                command=["powerprofilesctl", "set", look.power_profile],
                require_tool=True,
            )

        if plan.apps:
            self._do(phase, "flatpak", "update", timeout=self.profile.timeouts.package)
        self._do(phase, "fwupd", "refresh", timeout=self.profile.timeouts.network)
        self._do(phase, "fwupd", "get-updates", timeout=self.profile.timeouts.network)
        self._do(phase, "apt", "remove-unused", timeout=self.profile.timeouts.package)

        self._write_notes(phase, plan)

    def _write_notes(self, phase: str, plan: Plan) -> None:
        boot = self.report.boot
        flags = {stack_id: True for stack_id in plan.selected}
        flags["bootloader"] = boot is not None
        flags["boot_degraded"] = bool(boot and boot.degraded)
        flags["mok"] = bool(boot and boot.mok_enrollment_required)
        placeholders = {}
        if boot is not None:
            placeholders = {
                "__BOOT_MODE__": boot.effective.value,
                "__BOOT_REQUESTED__": boot.requested.value,
            }
        content = render_template(NOTES_TEMPLATE, flags=flags, placeholders=placeholders)
        if self.report.notes:
            content += "\nThis run:\n---------\n" + "".join(f"- {n}\n" for n in self.report.notes)
        dest = expand_dest(self.profile.notes_path)
        self._do(phase, "filesystem", "write", str(dest), path=str(dest), content=content, backup=False)


def run(
    plan: Plan,
    extension_directives: ExtensionPreferences | None,
    boot_request: BootRequest | None,
    *,
    registry: AdapterRegistry,
    facts: EnvironmentFacts,
    profile: Profile | None = None,
    dry_run: bool = False,
    operation_id: str | None = None,
) -> RunReport:
    """Apply *plan* through *registry*. See ``Executor``."""
    executor = Executor(registry, facts, profile=profile, dry_run=dry_run)
    return executor.run(plan, extension_directives, boot_request, operation_id=operation_id)


def write_audit_entries(report: RunReport, audit_writer: AuditWriter) -> None:
    """Write one ledger entry for *report*."""
    entry = AuditEntry(
        operation_id=report.operation_id,
        operation_type="dry-run" if report.dry_run else "run",
        status=report.status,
        selected=list(report.selected),
        actions_total=report.total,
        actions_succeeded=report.succeeded,
        actions_failed=report.failed,
        actions_skipped=report.skipped,
        effective_boot_mode=report.boot.effective.value if report.boot else None,
        failures=[f"{r.action_id}: {r.error}" for r in report.failures],
    )
    audit_writer.write(entry)
