"""
Template engine for bundled config files.

Templates live in ``deskstack/data/templates/`` and are real config
files (refind.conf, MangoHud.conf...) that stay readable as-is. Two
mechanisms:

  1. Conditional blocks, in ``#`` comment syntax so the file stays valid:

        # __IF_dual__
        ... kept only if flag 'dual' is set ...
        # __ENDIF__

        # __IF_NOT_dual__
        ... kept only if flag 'dual' is NOT set ...
        # __ENDIF__

     Blocks do not nest.

  2. Placeholder substitution: ``__HOME__`` → value from the mapping.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from deskstack.core.config.stack_loader import DATA_DIR

logger = logging.getLogger(__name__)

TEMPLATES_DIR = DATA_DIR / "templates"

_IF_RE = re.compile(r"^[ \t]*#\s*__IF_(\w+?)__[ \t]*\n(.*?)^[ \t]*#\s*__ENDIF__[ \t]*\n", re.DOTALL | re.MULTILINE)
_IF_NOT_RE = re.compile(r"^[ \t]*#\s*__IF_NOT_(\w+?)__[ \t]*\n(.*?)^[ \t]*#\s*__ENDIF__[ \t]*\n", re.DOTALL | re.MULTILINE)


class TemplateNotFound(LookupError):
    """Raised when a template reference does not resolve to a bundled file."""


def template_path(ref: str) -> Path:
    """Resolve a template reference like ``mangohud/MangoHud.conf``.

    Raises:
        TemplateNotFound: If the reference escapes the templates dir or
            does not exist.
    """
    candidate = (TEMPLATES_DIR / ref).resolve()
    if TEMPLATES_DIR.resolve() not in candidate.parents or not candidate.is_file():
        raise TemplateNotFound(f"Unknown template: {ref}")
    return candidate


def process_template(
    content: str,
    flags: dict[str, bool] | None = None,
    placeholders: dict[str, str] | None = None,
) -> str:
    """Apply conditional blocks then placeholders to *content*."""
    flags = flags or {}

    # IF_NOT first: the IF pattern would otherwise match "NOT_x" as a flag name
    content = _IF_NOT_RE.sub(
        lambda m: "" if flags.get(m.group(1), False) else m.group(2),
        content,
    )
    content = _IF_RE.sub(
        lambda m: m.group(2) if flags.get(m.group(1), False) else "",
        content,
    )

    for key, value in (placeholders or {}).items():
        content = content.replace(key, value)

    # Clean up empty lines left by removed blocks (max 2 consecutive)
    content = re.sub(r"\n{3,}", "\n\n", content)
    return content


def default_placeholders() -> dict[str, str]:
    """Per-user values every template may reference."""
    home = str(Path.home())
    return {
        "__HOME__": home,
        "__USER__": os.environ.get("USER", Path(home).name),
    }


def render_template(
    ref: str,
    flags: dict[str, bool] | None = None,
    placeholders: dict[str, str] | None = None,
) -> str:
    """Load a bundled template and process it.

    Raises:
        TemplateNotFound: If *ref* is unknown.
    """
    path = template_path(ref)
    values = default_placeholders()
    values.update(placeholders or {})
    logger.debug("Rendering template %s", ref)
    return process_template(path.read_text(encoding="utf-8"), flags, values)


def expand_dest(dest: str) -> Path:
    """Expand ``~`` and env vars in a destination path."""
    return Path(os.path.expandvars(os.path.expanduser(dest)))
