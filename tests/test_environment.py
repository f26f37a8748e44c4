"""
Tests for the environment classifier, against a fake sysfs tree.
"""

from pathlib import Path
from unittest.mock import patch

from deskstack.core.models.environment import GpuVendor, VirtualizationKind
from deskstack.core.services import environment
from deskstack.core.services.environment import (
    EFI_GLOBAL_GUID,
    classify,
    classify_virtualization,
    detect_esp_mounted,
    detect_gpu_vendors,
    detect_secure_boot,
    detect_uefi,
    probe_boot_loaders,
)


def _pci(sysfs: Path, slot: str, vendor: str, pci_class: str = "0x030000") -> None:
    dev = sysfs / "bus" / "pci" / "devices" / slot
    dev.mkdir(parents=True)
    (dev / "vendor").write_text(f"0x{vendor}\n")
    (dev / "class").write_text(f"{pci_class}\n")


def _efi(sysfs: Path, secure_boot: bytes | None = None) -> None:
    efivars = sysfs / "firmware" / "efi" / "efivars"
    efivars.mkdir(parents=True)
    if secure_boot is not None:
        (efivars / f"SecureBoot-{EFI_GLOBAL_GUID}").write_bytes(secure_boot)


class TestGpu:
    def test_amd(self, tmp_path: Path):
        _pci(tmp_path, "0000:03:00.0", "1002")
        assert detect_gpu_vendors(tmp_path) == {GpuVendor.AMD}

    def test_hybrid_laptop(self, tmp_path: Path):
        _pci(tmp_path, "0000:00:02.0", "8086")
        _pci(tmp_path, "0000:01:00.0", "10de", "0x030200")
        assert detect_gpu_vendors(tmp_path) == {GpuVendor.INTEL, GpuVendor.NVIDIA}

    def test_virtual_adapter_ignored(self, tmp_path: Path):
        _pci(tmp_path, "0000:00:01.0", "1234")
        _pci(tmp_path, "0000:00:02.0", "1af4")
        assert detect_gpu_vendors(tmp_path) == frozenset()

    def test_non_display_devices_ignored(self, tmp_path: Path):
        _pci(tmp_path, "0000:00:1f.3", "8086", "0x040300")   # audio
        _pci(tmp_path, "0000:00:14.0", "1002", "0x0c0330")   # USB
        assert detect_gpu_vendors(tmp_path) == frozenset()

    def test_missing_tree(self, tmp_path: Path):
        assert detect_gpu_vendors(tmp_path / "nope") == frozenset()


class TestVirtualization:
    def test_known_tokens(self):
        assert classify_virtualization("kvm") is VirtualizationKind.KVM
        assert classify_virtualization("qemu") is VirtualizationKind.KVM
        assert classify_virtualization("oracle\n") is VirtualizationKind.VBOX
        assert classify_virtualization("microsoft") is VirtualizationKind.HYPERV

    def test_unknown_token_is_none(self):
        assert classify_virtualization("xen") is VirtualizationKind.NONE
        assert classify_virtualization("none") is VirtualizationKind.NONE

    def test_probe_failure_is_none(self):
        with patch.object(environment.shutil, "which", return_value=None):
            assert environment._detect_virt_token() == "none"


class TestFirmware:
    def test_uefi(self, tmp_path: Path):
        _efi(tmp_path)
        assert detect_uefi(tmp_path)

    def test_legacy(self, tmp_path: Path):
        assert not detect_uefi(tmp_path)

    def test_secure_boot_on(self, tmp_path: Path):
        _efi(tmp_path, b"\x06\x00\x00\x00\x01")
        assert detect_secure_boot(tmp_path)

    def test_secure_boot_off(self, tmp_path: Path):
        _efi(tmp_path, b"\x06\x00\x00\x00\x00")
        assert not detect_secure_boot(tmp_path)

    def test_secure_boot_unreadable_is_off(self, tmp_path: Path):
        _efi(tmp_path)
        assert not detect_secure_boot(tmp_path)

    def test_secure_boot_short_payload_is_off(self, tmp_path: Path):
        _efi(tmp_path, b"\x06\x00")
        assert not detect_secure_boot(tmp_path)

    def test_esp_mounted(self, tmp_path: Path):
        mounts = tmp_path / "mounts"
        mounts.write_text("/dev/nvme0n1p1 /boot/efi vfat rw,relatime 0 0\n")
        assert detect_esp_mounted("/boot/efi/", mounts)
        assert not detect_esp_mounted("/efi", mounts)


class TestClassify:
    def test_full_facts(self, tmp_path: Path):
        _pci(tmp_path, "0000:03:00.0", "1002")
        _efi(tmp_path, b"\x06\x00\x00\x00\x01")
        mounts = tmp_path / "mounts"
        mounts.write_text("/dev/sda1 /boot/efi vfat rw 0 0\n")

        facts = classify(sysfs_root=tmp_path, mounts_file=mounts, virt_token="kvm")

        assert facts.gpu_vendors == {GpuVendor.AMD}
        assert facts.virtualization is VirtualizationKind.KVM
        assert facts.firmware_is_uefi
        assert facts.secure_boot_enabled
        assert facts.esp_mounted

    def test_legacy_has_no_secure_boot_or_esp(self, tmp_path: Path):
        mounts = tmp_path / "mounts"
        mounts.write_text("/dev/sda1 /boot/efi vfat rw 0 0\n")
        facts = classify(sysfs_root=tmp_path, mounts_file=mounts, virt_token="none")
        assert not facts.firmware_is_uefi
        assert not facts.secure_boot_enabled
        assert not facts.esp_mounted


class TestBootLoaders:
    def test_both_present(self, tmp_path: Path):
        (tmp_path / "EFI" / "ubuntu").mkdir(parents=True)
        (tmp_path / "EFI" / "ubuntu" / "shimx64.efi").write_bytes(b"")
        (tmp_path / "EFI" / "Microsoft" / "Boot").mkdir(parents=True)
        (tmp_path / "EFI" / "Microsoft" / "Boot" / "bootmgfw.efi").write_bytes(b"")
        presence = probe_boot_loaders(tmp_path)
        assert presence.has_primary_os_loader
        assert presence.has_secondary_os_loader

    def test_empty_esp(self, tmp_path: Path):
        presence = probe_boot_loaders(tmp_path)
        assert not presence.has_primary_os_loader
        assert not presence.has_secondary_os_loader

    def test_custom_checker(self, tmp_path: Path):
        seen = []

        def checker(path: Path) -> bool:
            seen.append(path)
            return path.name == "grubx64.efi"

        presence = probe_boot_loaders(tmp_path, is_file=checker)
        assert presence.has_primary_os_loader
        assert not presence.has_secondary_os_loader
        assert tmp_path / "EFI" / "ubuntu" / "shimx64.efi" in seen
