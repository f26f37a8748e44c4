"""
Plan — the flattened, deduplicated output of the compiler.

Every ``add_*`` method is a monotonic, first-seen-wins union: adding
something already present is a no-op and never changes its position.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from deskstack.core.models.stack import (
    ActionBundle,
    ActionKind,
    ExtensionDirective,
    StackAction,
)


@dataclass
class SkippedSource:
    """A stack or gate the compiler refused to expand, and why."""

    source: str
    reason: str


@dataclass
class Plan:
    """Ordered-but-deduplicated provisioning plan."""

    selected: list[str] = field(default_factory=list)
    actions: list[StackAction] = field(default_factory=list)
    apps: list[str] = field(default_factory=list)
    extensions: list[ExtensionDirective] = field(default_factory=list)
    architectures: list[str] = field(default_factory=list)
    debconf: list[str] = field(default_factory=list)
    skipped: list[SkippedSource] = field(default_factory=list)
    sources: dict[str, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._keys: set[tuple[ActionKind, str]] = {a.key for a in self.actions}

    # ── Mutation (union only) ──────────────────────────────────

    def add_action(self, action: StackAction, source: str = "") -> bool:
        """Append *action* unless its (kind, target) is already planned."""
        if source:
            contributors = self.sources.setdefault(_source_key(action), [])
            if source not in contributors:
                contributors.append(source)
        if action.key in self._keys:
            return False
        self._keys.add(action.key)
        self.actions.append(action)
        return True

    def add_extension(self, directive: ExtensionDirective) -> bool:
        if any(e.label == directive.label for e in self.extensions):
            return False
        self.extensions.append(directive)
        return True

    def add_bundle(self, bundle: ActionBundle, source: str = "") -> None:
        for action in bundle.actions:
            self.add_action(action, source)
        _extend_unique(self.apps, bundle.apps)
        _extend_unique(self.architectures, bundle.architectures)
        _extend_unique(self.debconf, bundle.debconf)

    # ── Views ──────────────────────────────────────────────────

    def of_kind(self, kind: ActionKind) -> list[StackAction]:
        return [a for a in self.actions if a.kind is kind]

    @property
    def packages(self) -> list[str]:
        return [a.target for a in self.of_kind(ActionKind.INSTALL_PACKAGE)]

    @property
    def services(self) -> list[str]:
        return [a.target for a in self.of_kind(ActionKind.ENABLE_SERVICE)]

    @property
    def templates(self) -> list[StackAction]:
        return self.of_kind(ActionKind.APPLY_CONFIG_TEMPLATE)

    @property
    def total_actions(self) -> int:
        return len(self.actions)

    def to_dict(self) -> dict:
        return {
            "selected": list(self.selected),
            "actions": [
                {
                    "kind": a.kind.value,
                    "target": a.target,
                    **({"template": a.template} if a.template else {}),
                    "sources": self.sources.get(_source_key(a), []),
                }
                for a in self.actions
            ],
            "apps": list(self.apps),
            "extensions": [e.label for e in self.extensions],
            "architectures": list(self.architectures),
            "debconf": list(self.debconf),
            "skipped": [{"source": s.source, "reason": s.reason} for s in self.skipped],
        }


def _source_key(action: StackAction) -> str:
    return f"{action.kind.value}:{action.target}"


def _extend_unique(target: list[str], items: list[str]) -> None:
    for item in items:
        if item not in target:
            target.append(item)
