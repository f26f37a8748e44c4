"""
HTTP adapter — JSON metadata and file downloads over urllib.

Downloads are staged: the body goes to ``dest + ".part"`` and is
renamed into place only once complete, so a failed fetch never leaves
a half-written file behind.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from pathlib import Path

from deskstack import __version__
from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.core.models.action import Receipt

logger = logging.getLogger(__name__)

USER_AGENT = f"deskstack/{__version__}"


class HttpAdapter(Adapter):
    """Operations:
        fetch-json: ``target`` URL → metadata["data"]
        download:   ``target`` URL → ``params.dest`` (staged)
    """

    operations = frozenset({"fetch-json", "download"})

    @property
    def name(self) -> str:
        return "http"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        valid, error = super().validate(context)
        if not valid:
            return valid, error
        url = context.action.target
        if not url.startswith(("https://", "http://")):
            return False, f"Not an http(s) URL: {url!r}"
        if context.action.operation == "download" and not context.param("dest"):
            return False, "Missing required param: 'dest' for download"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        url = context.action.target
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        try:
            with urllib.request.urlopen(req, timeout=context.timeout) as resp:
                body = resp.read()
        except urllib.error.HTTPError as e:
            return self.fail(context, f"HTTP {e.code} from {url}", metadata={"url": url})
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            return self.fail(context, f"Fetch failed for {url}: {e}", metadata={"url": url})

        if context.action.operation == "fetch-json":
            try:
                data = json.loads(body)
            except ValueError as e:
                return self.fail(context, f"Invalid JSON from {url}: {e}", metadata={"url": url})
            return self.ok(context, output=f"{len(body)} bytes", metadata={"url": url, "data": data})

        dest = Path(context.param("dest"))
        part = dest.with_name(dest.name + ".part")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            part.write_bytes(body)
            os.replace(part, dest)
        except OSError as e:
            part.unlink(missing_ok=True)
            return self.fail(context, f"Could not stage {dest}: {e}", metadata={"url": url})
        logger.debug("Downloaded %s → %s (%d bytes)", url, dest, len(body))
        return self.ok(
            context,
            output=f"{len(body)} bytes → {dest}",
            metadata={"url": url, "path": str(dest), "size": len(body)},
        )
