"""
Environment models — hardware and platform facts for one run.

EnvironmentFacts is computed once at the start of a run and is
read-only afterwards. BootLoaderPresence is deliberately separate: it
is re-read from the EFI system partition every time the boot
configuration is generated, since another OS may have been installed
between runs.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class GpuVendor(str, Enum):
    AMD = "amd"
    NVIDIA = "nvidia"
    INTEL = "intel"
    NONE = "none"


class VirtualizationKind(str, Enum):
    NONE = "none"
    KVM = "kvm"
    VMWARE = "vmware"
    VBOX = "vbox"
    HYPERV = "hyperv"


class EnvironmentFacts(BaseModel):
    """Classified host facts.

    ``gpu_vendors`` holds every physical display vendor seen; it is
    empty (not ``{NONE}``) when no physical adapter was found, so
    membership tests read naturally.
    """

    model_config = ConfigDict(frozen=True)

    gpu_vendors: frozenset[GpuVendor] = Field(default_factory=frozenset)
    virtualization: VirtualizationKind = VirtualizationKind.NONE
    firmware_is_uefi: bool = False
    secure_boot_enabled: bool = False
    esp_mounted: bool = False

    def has_gpu(self, vendor: GpuVendor | str) -> bool:
        return GpuVendor(vendor) in self.gpu_vendors

    @property
    def primary_gpu(self) -> GpuVendor:
        """First vendor in a fixed preference order, or NONE."""
        for vendor in (GpuVendor.NVIDIA, GpuVendor.AMD, GpuVendor.INTEL):
            if vendor in self.gpu_vendors:
                return vendor
        return GpuVendor.NONE

    def to_dict(self) -> dict:
        return {
            "gpu_vendors": sorted(v.value for v in self.gpu_vendors),
            "virtualization": self.virtualization.value,
            "firmware_is_uefi": self.firmware_is_uefi,
            "secure_boot_enabled": self.secure_boot_enabled,
            "esp_mounted": self.esp_mounted,
        }


class BootLoaderPresence(BaseModel):
    """Which OS loaders exist on the EFI system partition right now."""

    model_config = ConfigDict(frozen=True)

    has_primary_os_loader: bool = False
    has_secondary_os_loader: bool = False
