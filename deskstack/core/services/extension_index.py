"""
Extension index client — resolve registry ids on extensions.gnome.org.

Given a numeric extension id and the running shell's major version,
the index returns the uuid and a download URL for the matching build.
Any failure (network, HTTP status, missing fields) means "this one
extension is unavailable this run"; it never affects the others.

Lookups and downloads only read the network and write to a private
staging directory, so they run in parallel. Installing the staged
payloads is the executor's job and stays sequential.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from urllib.parse import urlencode

from deskstack.adapters.registry import AdapterRegistry
from deskstack.core.models.action import Action, Receipt
from deskstack.core.models.extension import ExtensionMetadata

logger = logging.getLogger(__name__)

EGO_HOST = "https://extensions.gnome.org"
_MAX_WORKERS = 4


def info_url(ext_id: int, shell_version: str) -> str:
    query = urlencode({"pk": ext_id, "shell_version": shell_version})
    return f"{EGO_HOST}/extension-info/?{query}"


def parse_info(data: object) -> ExtensionMetadata:
    """Validate an ``extension-info`` response.

    Raises:
        ValueError: when the payload lacks a uuid or download URL
            (the index answers with an empty build list for shell
            versions an extension does not support).
    """
    if not isinstance(data, dict):
        raise ValueError("extension-info response is not an object")
    uuid = data.get("uuid") or ""
    url = data.get("download_url") or ""
    if not uuid or not url:
        raise ValueError("no build for this shell version")
    if url.startswith("/"):
        url = EGO_HOST + url
    version = data.get("version")
    return ExtensionMetadata(
        uuid=uuid,
        download_url=url,
        name=data.get("name", ""),
        version=version if isinstance(version, int) else None,
    )


def resolve(
    registry: AdapterRegistry,
    ext_id: int,
    shell_version: str,
    *,
    timeout: int = 30,
    dry_run: bool = False,
) -> tuple[ExtensionMetadata | None, Receipt]:
    """Look up one id. Returns (metadata or None, receipt)."""
    action = Action(
        id=f"extensions_stage:info:{ext_id}",
        adapter="http",
        operation="fetch-json",
        phase="extensions_stage",
        target=info_url(ext_id, shell_version),
    )
    receipt = registry.execute_action(action, dry_run=dry_run, timeout=timeout)
    if not receipt.ok:
        return None, receipt
    try:
        meta = parse_info(receipt.metadata.get("data"))
    except ValueError as e:
        return None, Receipt.failure(
            adapter="http",
            action_id=action.id,
            error=f"extension {ext_id}: {e}",
        )
    return meta, receipt


def resolve_all(
    registry: AdapterRegistry,
    ext_ids: list[int],
    shell_version: str,
    *,
    timeout: int = 30,
    dry_run: bool = False,
) -> dict[int, tuple[ExtensionMetadata | None, Receipt]]:
    """Resolve every id concurrently. Result keys keep input order."""
    if not ext_ids:
        return {}
    with ThreadPoolExecutor(max_workers=min(_MAX_WORKERS, len(ext_ids))) as pool:
        futures = {
            ext_id: pool.submit(
                resolve, registry, ext_id, shell_version,
                timeout=timeout, dry_run=dry_run,
            )
            for ext_id in ext_ids
        }
        return {ext_id: fut.result() for ext_id, fut in futures.items()}


def staged_path(staging_dir: Path, uuid: str) -> Path:
    return staging_dir / f"{uuid}.shell-extension.zip"


def download_all(
    registry: AdapterRegistry,
    metas: list[ExtensionMetadata],
    staging_dir: Path,
    *,
    timeout: int = 30,
    dry_run: bool = False,
) -> dict[str, Receipt]:
    """Fetch every payload into *staging_dir*, keyed by uuid."""
    if not metas:
        return {}

    def _one(meta: ExtensionMetadata) -> Receipt:
        action = Action(
            id=f"extensions_stage:download:{meta.uuid}",
            adapter="http",
            operation="download",
            phase="extensions_stage",
            target=meta.download_url,
            params={"dest": str(staged_path(staging_dir, meta.uuid))},
        )
        return registry.execute_action(action, dry_run=dry_run, timeout=timeout)

    with ThreadPoolExecutor(max_workers=min(_MAX_WORKERS, len(metas))) as pool:
        futures = {meta.uuid: pool.submit(_one, meta) for meta in metas}
        return {uuid: fut.result() for uuid, fut in futures.items()}
