"""MCPRegistry: the private name -> ServerDescriptor store (mcps.json)."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from clawmgr.core.errors import ParseError
from clawmgr.core.utils import read_json, write_json_atomic

from .models import ServerDescriptor, SyncResult
from .reconcile import sync_external

if TYPE_CHECKING:
    from clawmgr.core.config import Config

logger = logging.getLogger(__name__)

Servers = dict[str, ServerDescriptor]

# one writer lock per resolved store path, shared by all MCPRegistry instances
_locks: dict[Path, threading.RLock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = path.resolve()
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.RLock()
        return lock


def upsert(servers: Mapping[str, ServerDescriptor], name: str, desc: ServerDescriptor) -> Servers:
    result = dict(servers)
    result[name] = desc
    return result


def remove(servers: Mapping[str, ServerDescriptor], name: str) -> Servers:
    return {k: v for k, v in servers.items() if k != name}


class MCPRegistry:
    """Authoritative store of the servers clawmgr manages.

    Every save is followed by a best-effort sync into the external tool's
    config; a failed sync is logged and reported on the returned SyncResult.
    """

    def __init__(self, path: Path, external_path: Path) -> None:
        self.path = path
        self.external_path = external_path
        self._lock = _lock_for(path)

    @classmethod
    def from_config(cls, config: Config) -> MCPRegistry:
        return cls(config.mcp_store_path, config.external_store_path)

    def load(self) -> Servers:
        data = read_json(self.path, default={})
        if not isinstance(data, dict):
            raise ParseError(f"{self.path} must contain a JSON object")
        return {name: ServerDescriptor.from_private(name, cfg) for name, cfg in data.items()}

    def save(
        self,
        servers: Mapping[str, ServerDescriptor],
        removed: Iterable[str] = (),
    ) -> SyncResult:
        """Write the registry, then sync it. *removed* names are also dropped from mcporter."""
        payload = {name: desc.to_private() for name, desc in servers.items()}
        write_json_atomic(self.path, payload)
        logger.info("saved %d MCP server(s) to %s", len(payload), self.path)
        return sync_external(servers, self.external_path, removed)

    def sync(self) -> SyncResult:
        """Re-project the current registry without changing it."""
        with self._lock:
            return sync_external(self.load(), self.external_path)

    def mutate(self, fn: Callable[[Servers], Servers | None]) -> SyncResult:
        """Load, apply *fn*, save, all under the store's writer lock.

        *fn* may edit the mapping in place or return a replacement. If it
        raises, nothing is written.
        """
        with self._lock:
            servers = self.load()
            before = set(servers)
            updated = fn(servers)
            if updated is None:
                updated = servers
            return self.save(updated, removed=before - set(updated))

    # ── convenience operations ──────────────────────────────────────

    def get(self, name: str) -> ServerDescriptor | None:
        return self.load().get(name)

    def put(self, desc: ServerDescriptor) -> SyncResult:
        return self.mutate(lambda servers: upsert(servers, desc.name, desc))

    def delete(self, name: str) -> tuple[bool, SyncResult]:
        """Remove *name*; the bool says whether it was registered."""
        found = False

        def _remove(servers: Servers) -> Servers:
            nonlocal found
            found = name in servers
            return remove(servers, name)

        sync = self.mutate(_remove)
        return found, sync

    def set_enabled(self, name: str, enabled: bool) -> SyncResult:
        def _toggle(servers: Servers) -> None:
            if name not in servers:
                raise KeyError(name)
            servers[name].enabled = enabled

        return self.mutate(_toggle)
