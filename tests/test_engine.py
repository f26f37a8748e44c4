"""
Tests for the engine executor — phase ordering, per-item failure
isolation, extension staging and reconciliation, boot configuration,
and the audit entry.

Every test runs against a mock-mode AdapterRegistry, so the calls the
executor makes are inspected rather than performed.
"""

import json
from pathlib import Path

import pytest

from conftest import ego_info
from deskstack.adapters.mock import MockAdapter
from deskstack.adapters.registry import READ_ONLY_OPERATIONS, AdapterRegistry
from deskstack.core.engine.executor import (
    PHASES,
    Executor,
    RunReport,
    generate_operation_id,
    merge_directives,
    run,
    write_audit_entries,
)
from deskstack.core.models.action import Receipt
from deskstack.core.models.boot import BootMode, BootRequest
from deskstack.core.models.environment import EnvironmentFacts
from deskstack.core.models.plan import Plan, SkippedSource
from deskstack.core.models.profile import ExtensionPreferences, Profile
from deskstack.core.models.stack import ActionBundle, ExtensionDirective, SettingDirective, TemplateRef
from deskstack.core.persistence.audit import AuditWriter

GSCONNECT = "gsconnect@andyholmes.github.io"
ARCMENU = "arcmenu@arcmenu.com"
DOCK = "ubuntu-dock@ubuntu.com"


def _plan(selected=("office",), extensions=(), **bundle) -> Plan:
    plan = Plan(selected=list(selected))
    plan.add_bundle(ActionBundle(**bundle), "test")
    for directive in extensions:
        plan.add_extension(directive)
    return plan


@pytest.fixture(autouse=True)
def fake_home(tmp_path: Path, monkeypatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def profile(tmp_path: Path) -> Profile:
    return Profile(notes_path=str(tmp_path / "notes.txt"))


def _phase_of(receipt: Receipt) -> str:
    return receipt.action_id.split(":", 1)[0]


def _ops(mock: MockAdapter, adapter: str, operation: str):
    return [c for c in mock.calls(operation) if c.action.adapter == adapter]


# ── Phase ordering ───────────────────────────────────────────────────


class TestPhaseOrder:
    def test_receipts_follow_phase_order(self, mock, mock_registry, uefi_amd, profile):
        mock.set_response("extensions_stage:info:3628", ego_info(3628, ARCMENU))
        plan = _plan(
            packages=["vlc"],
            apps=["org.example.App"],
            templates=[TemplateRef(template="btop/btop.conf", dest="~/.config/btop/btop.conf")],
            services=["ssh"],
            extensions=[ExtensionDirective(id=3628), ExtensionDirective(uuid=GSCONNECT)],
        )
        report = Executor(mock_registry, uefi_amd, profile).run(plan, boot_request=BootRequest())

        order = [PHASES.index(_phase_of(r)) for r in report.receipts]
        assert order == sorted(order)
        assert {_phase_of(r) for r in report.receipts} == set(PHASES)

    def test_packages_phase_sequence(self, mock, mock_registry, legacy_bios, profile):
        plan = _plan(packages=["vlc", "htop"], architectures=["i386"], debconf=["a b c d"])
        report = Executor(mock_registry, legacy_bios, profile).run(plan)

        ids = [r.action_id for r in report.phase_receipts["packages"]]
        assert ids == [
            "packages:preseed:debconf",
            "packages:add-architecture:i386",
            "packages:update",
            "packages:upgrade",
            "packages:install:vlc",
            "packages:install:htop",
        ]

    def test_upgrade_optional(self, mock, mock_registry, legacy_bios, profile):
        profile.upgrade = False
        Executor(mock_registry, legacy_bios, profile).run(_plan(packages=["vlc"]))
        assert not _ops(mock, "apt", "upgrade")

    def test_package_timeout(self, mock, mock_registry, legacy_bios, profile):
        profile.timeouts.package = 1234
        Executor(mock_registry, legacy_bios, profile).run(_plan(packages=["vlc"]))
        assert _ops(mock, "apt", "install")[0].timeout == 1234

    def test_skipped_sources_recorded(self, mock_registry, legacy_bios, profile):
        plan = _plan(selected=["bootloader"])
        plan.skipped.append(SkippedSource(source="bootloader", reason="requires UEFI firmware"))
        report = Executor(mock_registry, legacy_bios, profile).run(plan)
        first = report.phase_receipts["packages"][0]
        assert first.action_id == "stack:bootloader"
        assert first.skipped
        assert report.skipped_sources == [{"source": "bootloader", "reason": "requires UEFI firmware"}]


# ── Failure isolation ────────────────────────────────────────────────


class TestFailureIsolation:
    def test_failed_package_does_not_stop_run(self, mock, mock_registry, legacy_bios, profile):
        mock.set_failure("packages:install:nope", "E: Unable to locate package nope")
        report = Executor(mock_registry, legacy_bios, profile).run(
            _plan(packages=["vlc", "nope", "htop"], services=["ssh"]),
        )
        assert [c.action.target for c in _ops(mock, "apt", "install")] == ["vlc", "nope", "htop"]
        assert mock.targets("enable") == ["ssh"]
        assert report.status == "partial"
        assert [r.action_id for r in report.failures] == ["packages:install:nope"]
        assert report.phase_receipts["finalize"]

    def test_remote_failure_skips_apps(self, mock, mock_registry, legacy_bios, profile):
        mock.set_failure("apps:add-remote:flathub")
        report = Executor(mock_registry, legacy_bios, profile).run(_plan(apps=["a.App", "b.App"]))

        apps = report.phase_receipts["apps"]
        assert [r.status for r in apps] == ["failed", "skipped", "skipped"]
        assert "unavailable" in apps[1].reason
        assert not _ops(mock, "flatpak", "install")

    def test_missing_template_is_per_item(self, mock, mock_registry, legacy_bios, profile):
        plan = _plan(
            templates=[
                TemplateRef(template="nope/missing.conf", dest="~/a.conf"),
                TemplateRef(template="btop/btop.conf", dest="~/b.conf"),
            ],
            services=["ssh"],
        )
        report = Executor(mock_registry, legacy_bios, profile).run(plan)
        configure = report.phase_receipts["configure"]
        assert [r.status for r in configure] == ["failed", "ok", "ok"]
        assert "Unknown template" in configure[0].error

    def test_all_failed_status(self):
        report = RunReport()
        report.phase_receipts["packages"].append(Receipt.failure("apt", "packages:update", "x"))
        assert report.status == "failed"
        assert not report.all_ok


# ── Extensions ───────────────────────────────────────────────────────


class TestExtensions:
    def test_metadata_failure_isolated(self, mock, mock_registry, legacy_bios, profile):
        mock.set_failure("extensions_stage:info:1160", "HTTP 404")
        mock.set_response("extensions_stage:info:3628", ego_info(3628, ARCMENU))
        plan = _plan(extensions=[ExtensionDirective(id=1160), ExtensionDirective(id=3628)])

        report = Executor(mock_registry, legacy_bios, profile).run(plan)

        assert mock.targets("download") == [
            f"https://extensions.gnome.org/download-extension/{ARCMENU}.shell-extension.zip?version_tag=1",
        ]
        assert [c.action.target for c in _ops(mock, "gnome-extensions", "install")] == [ARCMENU]
        assert report.extensions_enabled == [ARCMENU]
        assert [r.action_id for r in report.failures] == ["extensions_stage:info:1160"]

        enabled_write = [c for c in mock.calls("set-array") if c.action.target == "enabled-extensions"]
        assert enabled_write[-1].params["value"] == [ARCMENU]

    def test_info_url_uses_shell_major(self, mock, mock_registry, legacy_bios, profile):
        mock.set_response("extensions_stage:info:3628", ego_info(3628, ARCMENU))
        Executor(mock_registry, legacy_bios, profile).run(_plan(extensions=[ExtensionDirective(id=3628)]))
        assert mock.targets("fetch-json") == [
            "https://extensions.gnome.org/extension-info/?pk=3628&shell_version=46",
        ]

    def test_unknown_shell_version_fails_remote_only(self, legacy_bios, profile):
        mock = MockAdapter()  # shell-version answers without a major version
        mock.set_operation_response(
            "list", Receipt.success("gnome-extensions", "x", metadata={"uuids": [GSCONNECT]}),
        )
        reg = AdapterRegistry()
        reg.set_mock_mode(True, mock)
        plan = _plan(extensions=[ExtensionDirective(id=3628), ExtensionDirective(uuid=GSCONNECT)])

        report = Executor(reg, legacy_bios, profile).run(plan)

        assert [r.action_id for r in report.failures] == ["extensions_stage:info:3628"]
        assert not mock.calls("fetch-json")
        assert report.extensions_enabled == [GSCONNECT]

    def test_failed_install_not_enabled(self, mock, mock_registry, legacy_bios, profile):
        mock.set_response("extensions_stage:info:3628", ego_info(3628, ARCMENU))
        mock.set_failure(f"extensions_stage:install:{ARCMENU}")
        report = Executor(mock_registry, legacy_bios, profile).run(
            _plan(extensions=[ExtensionDirective(id=3628)]),
        )
        assert report.extensions_enabled == []
        assert not report.phase_receipts["extensions_enable"]

    def test_disable_applied_in_stage_phase(self, mock, mock_registry, legacy_bios, profile):
        current = Receipt.success("gsettings", "x", metadata={"values": [DOCK, "keep@x"]})
        mock.set_response("extensions_stage:get-array:enabled-extensions", current)
        mock.set_response("extensions_enable:get-array:enabled-extensions", current)

        report = Executor(mock_registry, legacy_bios, profile).run(
            _plan(), ExtensionPreferences(disable=[DOCK]),
        )

        stage_writes = [
            (c.action.target, c.params["value"])
            for c in mock.calls("set-array")
            if c.action.phase == "extensions_stage"
        ]
        assert stage_writes == [
            ("disabled-extensions", [DOCK]),
            ("enabled-extensions", ["keep@x"]),
        ]
        assert DOCK in mock.targets("disable")
        assert report.extension_changes["disabled"][0] == DOCK

    def test_enable_beats_disable(self, mock, mock_registry, legacy_bios, profile):
        prefs = ExtensionPreferences(enable=[ExtensionDirective(uuid=GSCONNECT)], disable=[GSCONNECT])
        report = Executor(mock_registry, legacy_bios, profile).run(_plan(), prefs)
        final_writes = {
            c.action.target: c.params["value"]
            for c in mock.calls("set-array")
            if c.action.phase == "extensions_enable"
        }
        assert final_writes == {"enabled-extensions": [GSCONNECT]}
        assert report.extensions_enabled == [GSCONNECT]

    def test_live_enable_failure_is_skip(self, mock, mock_registry, legacy_bios, profile):
        mock.set_failure(f"extensions_enable:enable:{GSCONNECT}", "No D-Bus session")
        report = Executor(mock_registry, legacy_bios, profile).run(
            _plan(extensions=[ExtensionDirective(uuid=GSCONNECT)]),
        )
        live = report.phase_receipts["extensions_enable"][-1]
        assert live.skipped
        assert "next login" in live.reason
        assert report.extensions_enabled == [GSCONNECT]
        assert report.failed == 0

    def test_unreadable_state_changes_nothing(self, mock, mock_registry, legacy_bios, profile):
        for phase in ("extensions_stage", "extensions_enable"):
            mock.set_failure(f"{phase}:get-array:enabled-extensions", "no schema")
        report = Executor(mock_registry, legacy_bios, profile).run(
            _plan(extensions=[ExtensionDirective(uuid=GSCONNECT)]),
        )
        assert not mock.calls("set-array")
        assert not mock.calls("enable")
        statuses = [r.status for r in report.phase_receipts["extensions_enable"]]
        assert statuses == ["failed", "skipped"]

    def test_settings_applied(self, mock, mock_registry, legacy_bios, profile, fake_home):
        schemas = fake_home / ".local/share/gnome-shell/extensions" / GSCONNECT / "schemas"
        schemas.mkdir(parents=True)
        directive = ExtensionDirective(
            uuid=GSCONNECT,
            settings=[SettingDirective(schema="org.gnome.Shell.Extensions.GSConnect", key="show-indicators", value="true")],
        )
        Executor(mock_registry, legacy_bios, profile).run(_plan(extensions=[directive]))

        call = next(c for c in mock.calls("set") if c.action.phase == "extensions_enable")
        assert call.action.id == f"extensions_enable:set:{GSCONNECT}:show-indicators"
        assert call.params["schemadir"] == str(schemas)
        assert call.params["value"] == "true"

    def test_installed_extension_stays_disabled_until_configured(
        self, mock, mock_registry, legacy_bios, profile,
    ):
        mock.set_response("extensions_stage:info:3628", ego_info(3628, ARCMENU))
        directive = ExtensionDirective(
            id=3628,
            settings=[SettingDirective(schema="org.gnome.shell.extensions.arcmenu", key="menu-layout", value="'Eleven'")],
        )
        Executor(mock_registry, legacy_bios, profile).run(_plan(extensions=[directive]))

        steps = [
            (c.action.phase, c.action.operation, c.action.target)
            for c in mock.call_log
            if c.action.phase.startswith("extensions")
            and c.action.operation in ("install", "set-array", "set", "enable", "disable")
        ]
        assert steps == [
            ("extensions_stage", "install", ARCMENU),
            ("extensions_stage", "set-array", "disabled-extensions"),
            ("extensions_stage", "disable", ARCMENU),
            ("extensions_enable", "set", f"{ARCMENU}:menu-layout"),
            ("extensions_enable", "set-array", "enabled-extensions"),
            ("extensions_enable", "enable", ARCMENU),
        ]
        [force_disable] = [c for c in mock.calls("set-array") if c.action.phase == "extensions_stage"]
        assert force_disable.params["value"] == [ARCMENU]

    def test_failed_setting_keeps_extension_disabled(self, mock, mock_registry, legacy_bios, profile):
        mock.set_response("extensions_stage:info:3628", ego_info(3628, ARCMENU))
        mock.set_failure(f"extensions_enable:set:{ARCMENU}:menu-layout", "No such schema")
        directive = ExtensionDirective(
            id=3628,
            settings=[SettingDirective(schema="org.gnome.shell.extensions.arcmenu", key="menu-layout", value="'Eleven'")],
        )
        report = Executor(mock_registry, legacy_bios, profile).run(
            _plan(extensions=[directive, ExtensionDirective(uuid=GSCONNECT)]),
        )

        assert report.extensions_enabled == [GSCONNECT]
        assert ARCMENU not in mock.targets("enable")
        enabled_write = [c for c in mock.calls("set-array") if c.action.target == "enabled-extensions"]
        assert enabled_write[-1].params["value"] == [GSCONNECT]
        held = next(r for r in report.receipts if r.action_id == f"extensions_enable:enable:{ARCMENU}")
        assert held.skipped
        assert "setting failed" in held.reason

    def test_local_extension_not_installed_fails(self, mock, mock_registry, legacy_bios, profile):
        report = Executor(mock_registry, legacy_bios, profile).run(
            _plan(extensions=[ExtensionDirective(uuid="missing.org"), ExtensionDirective(uuid=GSCONNECT)]),
        )

        assert [r.action_id for r in report.failures] == ["extensions_stage:installed:missing.org"]
        assert report.extensions_enabled == [GSCONNECT]
        assert "missing.org" not in mock.targets("enable")
        written = [u for c in mock.calls("set-array") for u in c.params["value"]]
        assert "missing.org" not in written

    def test_unlistable_extensions_fail_local_only(self, mock, mock_registry, legacy_bios, profile):
        mock.set_failure("extensions_stage:list", "no session bus")
        report = Executor(mock_registry, legacy_bios, profile).run(
            _plan(extensions=[ExtensionDirective(uuid=GSCONNECT)]),
        )
        assert [r.action_id for r in report.failures] == [
            "extensions_stage:list",
            f"extensions_stage:installed:{GSCONNECT}",
        ]
        assert report.extensions_enabled == []
        assert not report.phase_receipts["extensions_enable"]

    def test_merge_directives(self):
        merged = merge_directives(
            [ExtensionDirective(id=1), ExtensionDirective(uuid="a@b")],
            [ExtensionDirective(uuid="a@b", settings=[]), ExtensionDirective(id=2)],
        )
        assert [d.label for d in merged] == ["ego:1", "a@b", "ego:2"]


# ── Boot ─────────────────────────────────────────────────────────────


def _loaders_present(mock: MockAdapter) -> None:
    mock.set_operation_response("exists", Receipt.success("filesystem", "x", metadata={"exists": True}))


class TestBoot:
    def test_not_requested(self, mock, mock_registry, uefi_amd, profile):
        report = Executor(mock_registry, uefi_amd, profile).run(_plan())
        assert report.phase_receipts["boot"] == []
        assert report.boot is None
        assert not mock.calls("exists")

    def test_legacy_firmware_skips(self, mock, mock_registry, legacy_bios, profile):
        report = Executor(mock_registry, legacy_bios, profile).run(_plan(), boot_request=BootRequest())
        [only] = report.phase_receipts["boot"]
        assert only.skipped
        assert "UEFI" in only.reason
        assert not _ops(mock, "refind", "install")

    def test_esp_not_mounted_skips(self, mock, mock_registry, profile):
        facts = EnvironmentFacts(firmware_is_uefi=True, esp_mounted=False)
        report = Executor(mock_registry, facts, profile).run(_plan(), boot_request=BootRequest())
        assert "not mounted" in report.phase_receipts["boot"][0].reason

    def test_dual_with_both_loaders(self, mock, mock_registry, uefi_amd, profile):
        _loaders_present(mock)
        report = Executor(mock_registry, uefi_amd, profile).run(
            _plan(), boot_request=BootRequest(mode=BootMode.DUAL),
        )
        assert report.boot.effective is BootMode.DUAL
        assert not report.boot.degraded
        assert report.boot.config_path == "/boot/efi/EFI/refind/refind.conf"

        writes = {c.action.target: c for c in _ops(mock, "filesystem", "write")}
        conf = writes["/boot/efi/EFI/refind/refind.conf"]
        assert conf.params["needs_sudo"] is True
        assert "include themes/deskstack/theme.conf" in conf.params["content"]
        assert "/boot/efi/EFI/refind/themes/deskstack/theme.conf" in writes

    def test_degraded_outcome(self, mock, mock_registry, uefi_amd, profile):
        # no loaders visible on the ESP
        report = Executor(mock_registry, uefi_amd, profile).run(
            _plan(), boot_request=BootRequest(mode=BootMode.DUAL),
        )
        assert report.boot.requested is BootMode.DUAL
        assert report.boot.effective is BootMode.SHOW_ALL
        assert report.boot.degraded
        assert report.failed == 0
        assert any("not available" in n for n in report.notes)

        notes = next(c for c in _ops(mock, "filesystem", "write") if c.action.phase == "finalize")
        assert "This run:" in notes.params["content"]
        assert notes.params["backup"] is False

    def test_secure_boot_needs_mok(self, mock, mock_registry, profile):
        _loaders_present(mock)
        facts = EnvironmentFacts(firmware_is_uefi=True, esp_mounted=True, secure_boot_enabled=True)
        report = Executor(mock_registry, facts, profile).run(_plan(), boot_request=BootRequest())
        assert report.boot.mok_enrollment_required
        assert any("MOK" in n for n in report.notes)

    def test_refind_failure_skips_config(self, mock, mock_registry, uefi_amd, profile):
        mock.set_failure("boot:install:/boot/efi", "refind-install failed")
        report = Executor(mock_registry, uefi_amd, profile).run(_plan(), boot_request=BootRequest())
        assert [r.status for r in report.phase_receipts["boot"]] == ["failed", "skipped"]
        assert report.boot is None
        assert not [c for c in _ops(mock, "filesystem", "write") if c.action.phase == "boot"]

    def test_theme_download_fallback(self, mock, mock_registry, uefi_amd, profile):
        mock.set_failure("boot:download:https://example.org/theme.conf")
        Executor(mock_registry, uefi_amd, profile).run(
            _plan(), boot_request=BootRequest(theme_url="https://example.org/theme.conf"),
        )
        theme = next(c for c in _ops(mock, "filesystem", "write") if c.action.target.endswith("theme.conf"))
        assert theme.params["content"].strip()


# ── Dry run ──────────────────────────────────────────────────────────


class TestDryRun:
    def test_only_reads_reach_adapters(self, mock, mock_registry, uefi_amd, profile):
        mock.set_response("extensions_stage:info:3628", ego_info(3628, ARCMENU))
        plan = _plan(
            packages=["vlc"],
            apps=["a.App"],
            services=["ssh"],
            extensions=[ExtensionDirective(id=3628), ExtensionDirective(uuid=GSCONNECT)],
        )
        report = Executor(mock_registry, uefi_amd, profile, dry_run=True).run(
            plan, boot_request=BootRequest(),
        )

        assert {c.action.operation for c in mock.call_log} <= READ_ONLY_OPERATIONS
        assert report.failed == 0
        assert report.dry_run
        assert report.skipped > 0


# ── Report + audit ───────────────────────────────────────────────────


class TestReport:
    def test_to_dict_is_json(self, mock_registry, uefi_amd, profile):
        report = run(
            _plan(packages=["vlc"]), None, BootRequest(),
            registry=mock_registry, facts=uefi_amd, profile=profile, operation_id="op-test",
        )
        data = json.loads(json.dumps(report.to_dict()))
        assert data["operation_id"] == "op-test"
        assert list(data["phases"]) == list(PHASES)
        assert data["boot"]["degraded"] is True
        assert data["phases"]["packages"]["total"] == len(data["phases"]["packages"]["receipts"])

    def test_operation_id_format(self):
        op = generate_operation_id()
        assert op.startswith("op-")
        assert op != generate_operation_id()

    def test_audit_entry(self, tmp_path, mock, mock_registry, legacy_bios, profile):
        mock.set_failure("packages:install:nope")
        report = Executor(mock_registry, legacy_bios, profile).run(_plan(packages=["nope"]))
        writer = AuditWriter(tmp_path / "audit.ndjson")

        write_audit_entries(report, writer)

        [entry] = writer.read_all()
        assert entry.operation_id == report.operation_id
        assert entry.operation_type == "run"
        assert entry.status == "partial"
        assert entry.actions_failed == 1
        assert entry.failures[0].startswith("packages:install:nope")
        assert entry.effective_boot_mode is None
