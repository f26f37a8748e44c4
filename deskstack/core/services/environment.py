"""
Environment classifier — GPU, virtualization and firmware detection.

Read-only system probes: ``/sys/bus/pci/devices``, ``systemd-detect-virt``,
``/sys/firmware/efi``, the SecureBoot EFI variable, ``/proc/mounts``,
and the EFI system partition itself.

Nothing here raises. A probe that cannot run leaves its fact at the
"none/false" value.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable

from deskstack.core.models.environment import (
    BootLoaderPresence,
    EnvironmentFacts,
    GpuVendor,
    VirtualizationKind,
)

logger = logging.getLogger(__name__)


# ── Static tables ──────────────────────────────────────────────

# PCI vendor id → physical GPU vendor
_PCI_GPU_VENDORS: dict[str, GpuVendor] = {
    "1002": GpuVendor.AMD,
    "10de": GpuVendor.NVIDIA,
    "8086": GpuVendor.INTEL,
}

# Emulated / paravirtual display adapters. These must never trigger
# physical-GPU actions.
_VIRTUAL_PCI_VENDORS: frozenset[str] = frozenset({
    "1234",  # QEMU/Bochs stdvga
    "1af4",  # virtio-gpu
    "1b36",  # Red Hat QXL
    "15ad",  # VMware SVGA
    "80ee",  # VirtualBox VGA
    "1414",  # Hyper-V synthetic video
    "1013",  # Cirrus Logic (emulated)
})

# systemd-detect-virt token → VirtualizationKind
_VIRT_TOKENS: dict[str, VirtualizationKind] = {
    "kvm": VirtualizationKind.KVM,
    "qemu": VirtualizationKind.KVM,
    "vmware": VirtualizationKind.VMWARE,
    "oracle": VirtualizationKind.VBOX,
    "microsoft": VirtualizationKind.HYPERV,
}

# PCI class prefix 0x03 = display controller (VGA, XGA, 3D, other)
_DISPLAY_CLASS_PREFIX = "0x03"

EFI_GLOBAL_GUID = "8be4df61-93ca-11d2-aa0d-00e098032b8c"

# Loader paths relative to the ESP root
_PRIMARY_LOADERS = ("EFI/ubuntu/shimx64.efi", "EFI/ubuntu/grubx64.efi")
_SECONDARY_LOADERS = ("EFI/Microsoft/Boot/bootmgfw.efi",)


# ── GPU ────────────────────────────────────────────────────────

def _read_hex_id(path: Path) -> str:
    """Read a sysfs id file like ``0x10de`` → ``10de``."""
    try:
        raw = path.read_text().strip().lower()
    except OSError:
        return ""
    return raw[2:] if raw.startswith("0x") else raw


def detect_gpu_vendors(sysfs_root: Path = Path("/sys")) -> frozenset[GpuVendor]:
    """Physical GPU vendors across every display-class PCI device."""
    devices = sysfs_root / "bus" / "pci" / "devices"
    vendors: set[GpuVendor] = set()
    try:
        entries = sorted(devices.iterdir())
    except OSError:
        logger.debug("No PCI device tree at %s", devices)
        return frozenset()

    for dev in entries:
        try:
            pci_class = (dev / "class").read_text().strip().lower()
        except OSError:
            continue
        if not pci_class.startswith(_DISPLAY_CLASS_PREFIX):
            continue

        vendor_id = _read_hex_id(dev / "vendor")
        if vendor_id in _VIRTUAL_PCI_VENDORS:
            logger.debug("Ignoring virtual display adapter %s (%s)", dev.name, vendor_id)
            continue
        vendor = _PCI_GPU_VENDORS.get(vendor_id)
        if vendor is not None:
            vendors.add(vendor)

    return frozenset(vendors)


# ── Virtualization ─────────────────────────────────────────────

def _detect_virt_token(timeout: int = 5) -> str:
    """Run ``systemd-detect-virt`` and return its token ("none" on any failure)."""
    if not shutil.which("systemd-detect-virt"):
        return "none"
    try:
        r = subprocess.run(
            ["systemd-detect-virt", "--vm"],
            capture_output=True, text=True, timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired):
        return "none"
    return r.stdout.strip().lower() or "none"


def classify_virtualization(token: str) -> VirtualizationKind:
    """Map a platform virtualization token; unrecognized tokens map to NONE."""
    return _VIRT_TOKENS.get(token.strip().lower(), VirtualizationKind.NONE)


# ── Firmware ───────────────────────────────────────────────────

def detect_uefi(sysfs_root: Path = Path("/sys")) -> bool:
    """UEFI iff the firmware exposes an EFI variable store."""
    efi = sysfs_root / "firmware" / "efi"
    return (efi / "efivars").is_dir() or (efi / "vars").is_dir()


def detect_secure_boot(sysfs_root: Path = Path("/sys")) -> bool:
    """Read the SecureBoot EFI variable.

    efivarfs prefixes the payload with four attribute bytes, so the
    state is byte 4. Any read failure means "disabled".
    """
    var = sysfs_root / "firmware" / "efi" / "efivars" / f"SecureBoot-{EFI_GLOBAL_GUID}"
    try:
        data = var.read_bytes()
    except OSError:
        return False
    return len(data) >= 5 and data[4] == 1


def detect_esp_mounted(esp_path: str = "/boot/efi", mounts_file: Path = Path("/proc/mounts")) -> bool:
    """Whether *esp_path* is a mount point listed in ``/proc/mounts``."""
    target = esp_path.rstrip("/") or "/"
    try:
        lines = mounts_file.read_text().splitlines()
    except OSError:
        return False
    for line in lines:
        parts = line.split()
        if len(parts) >= 2 and parts[1] == target:
            return True
    return False


# ── Entry points ───────────────────────────────────────────────

def classify(
    *,
    sysfs_root: Path = Path("/sys"),
    mounts_file: Path = Path("/proc/mounts"),
    esp_path: str = "/boot/efi",
    virt_token: str | None = None,
) -> EnvironmentFacts:
    """Compute the environment facts for this run.

    The keyword arguments only exist so tests can point the probes at a
    fake tree; production callers use ``classify()``.
    """
    token = virt_token if virt_token is not None else _detect_virt_token()
    uefi = detect_uefi(sysfs_root)

    facts = EnvironmentFacts(
        gpu_vendors=detect_gpu_vendors(sysfs_root),
        virtualization=classify_virtualization(token),
        firmware_is_uefi=uefi,
        secure_boot_enabled=detect_secure_boot(sysfs_root) if uefi else False,
        esp_mounted=detect_esp_mounted(esp_path, mounts_file) if uefi else False,
    )
    logger.info(
        "Environment: gpu=%s virt=%s uefi=%s secureboot=%s esp=%s",
        ",".join(sorted(v.value for v in facts.gpu_vendors)) or "none",
        facts.virtualization.value,
        facts.firmware_is_uefi,
        facts.secure_boot_enabled,
        facts.esp_mounted,
    )
    return facts


def probe_boot_loaders(
    esp_path: str | Path,
    is_file: Callable[[Path], bool] | None = None,
) -> BootLoaderPresence:
    """Look for OS loaders on the ESP. Never cached.

    The ESP is usually root-only (vfat, umask 0077), so callers running
    unprivileged pass an *is_file* that checks through sudo.
    """
    esp = Path(esp_path)
    check = is_file or Path.is_file

    def _any(paths: tuple[str, ...]) -> bool:
        for rel in paths:
            try:
                if check(esp / rel):
                    return True
            except OSError:
                continue
        return False

    presence = BootLoaderPresence(
        has_primary_os_loader=_any(_PRIMARY_LOADERS),
        has_secondary_os_loader=_any(_SECONDARY_LOADERS),
    )
    logger.debug("Boot loaders on %s: %s", esp, presence.model_dump())
    return presence
