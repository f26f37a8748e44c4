"""
Domain models — Pydantic types for deskstack.

All models are re-exported here for convenient access:

    from deskstack.core.models import Stack, StackAction, Plan, Receipt
"""

from deskstack.core.models.action import Action, Receipt
from deskstack.core.models.boot import BootMode, BootOutcome, BootRequest
from deskstack.core.models.environment import (
    BootLoaderPresence,
    EnvironmentFacts,
    GpuVendor,
    VirtualizationKind,
)
from deskstack.core.models.extension import ExtensionMetadata, ExtensionState
from deskstack.core.models.plan import Plan, SkippedSource
from deskstack.core.models.profile import Appearance, Profile, Timeouts
from deskstack.core.models.stack import (
    ActionBundle,
    ActionKind,
    ExtensionDirective,
    GateCondition,
    HardwareGate,
    SettingDirective,
    Stack,
    StackAction,
    StackRegistry,
    TemplateRef,
)
from deskstack.core.models.state import PhaseRecord, ProvisionState, RunRecord

__all__ = [
    # action.py
    "Action",
    "ActionBundle",
    "ActionKind",
    "Appearance",
    # environment.py
    "BootLoaderPresence",
    # boot.py
    "BootMode",
    "BootOutcome",
    "BootRequest",
    "EnvironmentFacts",
    "ExtensionDirective",
    # extension.py
    "ExtensionMetadata",
    "ExtensionState",
    "GateCondition",
    "GpuVendor",
    "HardwareGate",
    "PhaseRecord",
    # plan.py
    "Plan",
    # profile.py
    "Profile",
    # state.py
    "ProvisionState",
    "Receipt",
    "RunRecord",
    "SettingDirective",
    "SkippedSource",
    # stack.py
    "Stack",
    "StackAction",
    "StackRegistry",
    "TemplateRef",
    "Timeouts",
    "VirtualizationKind",
]
