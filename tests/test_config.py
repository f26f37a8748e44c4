"""
Tests for configuration loading — deskstack.yml and the stack registry.
"""

import textwrap
from pathlib import Path

import pytest

from deskstack.core.config import ConfigError, bundled_registry, find_profile_file, load_profile, load_registry
from deskstack.core.models.boot import BootMode
from deskstack.core.models.environment import GpuVendor


@pytest.fixture
def profile_yml(tmp_path: Path) -> Path:
    content = textwrap.dedent("""\
        stacks: [gaming, monitoring]
        upgrade: false
        boot:
          mode: single
          esp_path: /efi
        appearance:
          accent_color: teal
        extensions:
          enable:
            - uuid: gsconnect@andyholmes.github.io
            - id: 3628
              settings:
                - schema: org.gnome.shell.extensions.arcmenu
                  key: menu-layout
                  value: "'Windows'"
          disable:
            - ubuntu-dock@ubuntu.com
    """)
    path = tmp_path / "deskstack.yml"
    path.write_text(content)
    return path


class TestLoadProfile:
    def test_explicit_file(self, profile_yml):
        profile = load_profile(profile_yml)
        assert profile.stacks == ["gaming", "monitoring"]
        assert profile.upgrade is False
        assert profile.boot.mode is BootMode.SINGLE
        assert profile.boot.esp_path == "/efi"
        assert profile.appearance.accent_color == "teal"
        # untouched sections keep their defaults
        assert profile.appearance.color_scheme == "prefer-dark"
        assert profile.timeouts.package == 900

    def test_extension_preferences(self, profile_yml):
        prefs = load_profile(profile_yml).extensions
        assert [d.label for d in prefs.enable] == ["gsconnect@andyholmes.github.io", "ego:3628"]
        assert prefs.enable[1].settings[0].schema_id == "org.gnome.shell.extensions.arcmenu"
        assert prefs.disable == ["ubuntu-dock@ubuntu.com"]

    def test_wrapped_under_profile_key(self, tmp_path):
        path = tmp_path / "deskstack.yml"
        path.write_text("profile:\n  stacks: [office]\n")
        assert load_profile(path).stacks == ["office"]

    def test_empty_file_is_defaults(self, tmp_path):
        path = tmp_path / "deskstack.yml"
        path.write_text("")
        profile = load_profile(path)
        assert profile.stacks is None
        assert profile.boot.mode is BootMode.DUAL

    def test_no_search_is_defaults(self):
        assert load_profile(search=False).upgrade is True

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_profile(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "deskstack.yml"
        path.write_text("stacks: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_profile(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "deskstack.yml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_profile(path)

    def test_bad_boot_mode(self, tmp_path):
        path = tmp_path / "deskstack.yml"
        path.write_text("boot:\n  mode: triple\n")
        with pytest.raises(ConfigError, match="Invalid profile"):
            load_profile(path)

    def test_extension_without_identity(self, tmp_path):
        path = tmp_path / "deskstack.yml"
        path.write_text("extensions:\n  enable:\n    - settings: []\n")
        with pytest.raises(ConfigError):
            load_profile(path)


class TestFindProfile:
    def test_walks_up(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        (tmp_path / "deskstack.yml").write_text("upgrade: false\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_profile_file(nested) == tmp_path / "deskstack.yml"

    def test_user_config_fallback(self, tmp_path, monkeypatch):
        xdg = tmp_path / "xdg"
        (xdg / "deskstack").mkdir(parents=True)
        (xdg / "deskstack" / "deskstack.yml").write_text("upgrade: false\n")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
        start = tmp_path / "work"
        start.mkdir()
        assert find_profile_file(start) == xdg / "deskstack" / "deskstack.yml"


class TestRegistry:
    def test_bundled_registry_is_closed_table(self):
        registry = bundled_registry()
        assert {"office", "monitoring", "gaming", "backups", "remote", "desktop", "bootloader"} <= set(
            registry.stack_ids
        )
        assert registry.get("bootloader").uefi_only
        assert "refind" in registry.get("bootloader").packages

    def test_bundled_defaults(self):
        registry = bundled_registry()
        assert registry.default_selection
        assert all(registry.get(s).default for s in registry.default_selection)

    def test_bundled_gates(self):
        gates = {g.name: g for g in bundled_registry().hardware}
        assert any(g.when.gpu is GpuVendor.AMD for g in gates.values())

    def test_unknown(self):
        assert bundled_registry().unknown(["gaming", "zzz", "aaa"]) == ["aaa", "zzz"]

    def test_name_comes_from_key(self, tmp_path):
        path = tmp_path / "stacks.yml"
        path.write_text("stacks:\n  alpha:\n    packages: [htop]\n  empty:\n")
        registry = load_registry(path)
        assert registry.get("alpha").name == "alpha"
        assert registry.get("empty").packages == []

    def test_name_mismatch(self, tmp_path):
        path = tmp_path / "stacks.yml"
        path.write_text("stacks:\n  alpha:\n    name: beta\n")
        with pytest.raises(ConfigError, match="does not match"):
            load_registry(path)

    def test_invalid_gate(self, tmp_path):
        path = tmp_path / "stacks.yml"
        path.write_text("hardware:\n  - name: x\n    when:\n      gpu: matrox\n")
        with pytest.raises(ConfigError, match="Invalid stack registry"):
            load_registry(path)
