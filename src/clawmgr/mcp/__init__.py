"""MCP: server registry, mcporter sync, installer and health probe."""

from .installer import MCPInstaller, check_name, find_entry_point, resolve_name
from .models import (
    InstallResult,
    ProbeResult,
    RemoteTransport,
    ServerDescriptor,
    StdioTransport,
    SyncResult,
)
from .probe import initialize_request, probe, probe_local, probe_remote
from .reconcile import reconcile, sync_external
from .registry import MCPRegistry, remove, upsert

__all__ = [
    "InstallResult",
    "MCPInstaller",
    "MCPRegistry",
    "ProbeResult",
    "RemoteTransport",
    "ServerDescriptor",
    "StdioTransport",
    "SyncResult",
    "check_name",
    "find_entry_point",
    "initialize_request",
    "probe",
    "probe_local",
    "probe_remote",
    "reconcile",
    "remove",
    "resolve_name",
    "sync_external",
    "upsert",
]
