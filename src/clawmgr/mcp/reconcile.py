"""One-way projection of the registry into mcporter's config file."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from clawmgr.core.errors import ClawError
from clawmgr.core.utils import read_json, write_json_atomic

from .models import ServerDescriptor, SyncResult

logger = logging.getLogger(__name__)

SERVERS_KEY = "mcpServers"


def reconcile(
    servers: Mapping[str, ServerDescriptor],
    external: Mapping,
    removed: Iterable[str] = (),
) -> dict:
    """Return a copy of *external* with the registry's servers projected into it.

    Enabled servers are written under their name, disabled ones and the
    *removed* names (just deleted from the registry) are dropped.
    Names the registry doesn't know are left alone, as are all other
    top-level fields: the file is shared with mcporter and the user.
    """
    doc = copy.deepcopy(dict(external))
    entries = doc.get(SERVERS_KEY)
    if not isinstance(entries, dict):
        entries = {}
        doc[SERVERS_KEY] = entries

    for name, desc in servers.items():
        if desc.enabled:
            entries[name] = desc.to_external()
        else:
            entries.pop(name, None)
    for name in removed:
        if name not in servers:
            entries.pop(name, None)
    return doc


def sync_external(
    servers: Mapping[str, ServerDescriptor],
    path: Path,
    removed: Iterable[str] = (),
) -> SyncResult:
    """Reconcile *path* on disk. Never raises; failures come back degraded."""
    try:
        current = read_json(path, default={SERVERS_KEY: {}})
        if not isinstance(current, dict):
            return _degraded(path, f"{path} does not contain a JSON object; left untouched")
        if SERVERS_KEY in current and not isinstance(current[SERVERS_KEY], dict):
            return _degraded(path, f"{SERVERS_KEY} in {path} is not a JSON object; left untouched")
        updated = reconcile(servers, current, removed)
        write_json_atomic(path, updated)
    except ClawError as e:
        return _degraded(path, str(e))
    n = sum(1 for d in servers.values() if d.enabled)
    logger.info("synced %d enabled MCP server(s) to %s", n, path)
    return SyncResult(path=path)


def _degraded(path: Path, error: str) -> SyncResult:
    logger.warning("failed to sync MCP servers to %s: %s", path, error)
    return SyncResult(path=path, ok=False, error=error)
