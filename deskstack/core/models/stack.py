"""
Stack models — the declarative provisioning vocabulary.

A stack is a named bundle the user opts into as a unit. It lists
packages, config templates, services, sandboxed apps and shell
extensions. Stacks are loaded from the bundled ``stacks.yml`` and
flattened into StackActions by the compiler.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from deskstack.core.models.environment import GpuVendor, VirtualizationKind


class ActionKind(str, Enum):
    INSTALL_PACKAGE = "install_package"
    ENABLE_SERVICE = "enable_service"
    APPLY_CONFIG_TEMPLATE = "apply_config_template"


class StackAction(BaseModel):
    """One declarative action.

    For ``apply_config_template`` the target is the destination path
    and ``template`` names the bundled template. For the other kinds
    ``template`` is unused.
    """

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    target: str
    template: str = ""

    @property
    def key(self) -> tuple[ActionKind, str]:
        """Identity used for deduplication."""
        return (self.kind, self.target)

    @classmethod
    def install_package(cls, name: str) -> StackAction:
        return cls(kind=ActionKind.INSTALL_PACKAGE, target=name)

    @classmethod
    def enable_service(cls, name: str) -> StackAction:
        return cls(kind=ActionKind.ENABLE_SERVICE, target=name)

    @classmethod
    def apply_config_template(cls, template: str, dest: str) -> StackAction:
        return cls(kind=ActionKind.APPLY_CONFIG_TEMPLATE, target=dest, template=template)

    def describe(self) -> str:
        if self.kind is ActionKind.APPLY_CONFIG_TEMPLATE:
            return f"{self.kind.value} {self.template} → {self.target}"
        return f"{self.kind.value} {self.target}"


class TemplateRef(BaseModel):
    """A config template to render to a destination path."""

    template: str
    dest: str


class SettingDirective(BaseModel):
    """A single desktop-shell setting (``gsettings set schema key value``)."""

    schema_id: str = Field(alias="schema")
    key: str
    value: str

    model_config = ConfigDict(populate_by_name=True)


class ExtensionDirective(BaseModel):
    """A shell extension to install, configure and enable.

    Extensions are identified either by their registry id (the numeric
    pk on extensions.gnome.org) or directly by uuid when the extension
    ships with the distribution.
    """

    id: int | None = None
    uuid: str = ""
    settings: list[SettingDirective] = Field(default_factory=list)

    @model_validator(mode="after")
    def _needs_identity(self) -> ExtensionDirective:
        if self.id is None and not self.uuid:
            raise ValueError("extension directive needs an 'id' or a 'uuid'")
        return self

    @property
    def label(self) -> str:
        return self.uuid or f"ego:{self.id}"


class ActionBundle(BaseModel):
    """The action-bearing fields shared by stacks and hardware gates."""

    packages: list[str] = Field(default_factory=list)
    templates: list[TemplateRef] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    apps: list[str] = Field(default_factory=list)
    architectures: list[str] = Field(default_factory=list)
    debconf: list[str] = Field(default_factory=list)

    @property
    def actions(self) -> list[StackAction]:
        """Packages first, then templates, then services."""
        result = [StackAction.install_package(p) for p in self.packages]
        result += [StackAction.apply_config_template(t.template, t.dest) for t in self.templates]
        result += [StackAction.enable_service(s) for s in self.services]
        return result


class Stack(ActionBundle):
    """A user-selectable bundle."""

    name: str
    label: str = ""
    description: str = ""
    default: bool = False
    uefi_only: bool = False
    extensions: list[ExtensionDirective] = Field(default_factory=list)


class GateCondition(BaseModel):
    """Environment predicate for a hardware gate. All set fields must hold."""

    gpu: GpuVendor | None = None
    virtualization: VirtualizationKind | None = None
    uefi: bool | None = None


class HardwareGate(ActionBundle):
    """Actions added iff the environment matches, regardless of selection."""

    name: str = ""
    when: GateCondition = Field(default_factory=GateCondition)


class StackRegistry(BaseModel):
    """The full, closed table of stacks known to this build."""

    core: ActionBundle = Field(default_factory=ActionBundle)
    stacks: dict[str, Stack] = Field(default_factory=dict)
    hardware: list[HardwareGate] = Field(default_factory=list)

    @property
    def stack_ids(self) -> list[str]:
        return list(self.stacks.keys())

    def get(self, stack_id: str) -> Stack | None:
        return self.stacks.get(stack_id)

    def unknown(self, selected: set[str] | list[str]) -> list[str]:
        """Requested ids that are not in the registry, sorted."""
        return sorted(s for s in selected if s not in self.stacks)

    @property
    def default_selection(self) -> list[str]:
        return [s.name for s in self.stacks.values() if s.default]
