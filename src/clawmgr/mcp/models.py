"""MCP data models: transports, ServerDescriptor, sync/install/probe results."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from clawmgr.core.errors import ParseError


@dataclass
class StdioTransport:
    """A local server spawned as a child process, speaking over stdio."""

    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"command": self.command, "args": list(self.args), "env": dict(self.env)}


@dataclass
class RemoteTransport:
    """A remote server reached over HTTP (JSON or SSE responses)."""

    url: str

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url}


Transport = Union[StdioTransport, RemoteTransport]


@dataclass
class ServerDescriptor:
    """One managed MCP server."""

    name: str
    transport: Transport
    enabled: bool = True

    @property
    def kind(self) -> str:
        return "stdio" if isinstance(self.transport, StdioTransport) else "remote"

    @property
    def endpoint(self) -> str:
        t = self.transport
        if isinstance(t, StdioTransport):
            return " ".join([t.command, *t.args])
        return t.url

    def to_private(self) -> dict[str, Any]:
        """Shape stored in mcps.json: every transport field plus ``enabled``."""
        data: dict[str, Any] = {"command": "", "args": [], "env": {}, "url": ""}
        data.update(self.transport.to_dict())
        data["enabled"] = self.enabled
        return data

    def to_external(self) -> dict[str, Any]:
        """Shape stored in mcporter.json: presence means enabled, so no flag."""
        return self.transport.to_dict()

    @classmethod
    def from_private(cls, name: str, data: Any) -> ServerDescriptor:
        if not isinstance(data, dict):
            raise ParseError(f"MCP server {name!r}: expected an object, got {type(data).__name__}")
        command = data.get("command") or ""
        url = data.get("url") or ""
        transport: Transport
        if command:
            args = data.get("args") or []
            env = data.get("env") or {}
            if not isinstance(args, list) or not isinstance(env, dict):
                raise ParseError(f"MCP server {name!r}: 'args' must be a list and 'env' an object")
            transport = StdioTransport(
                command=str(command),
                args=[str(a) for a in args],
                env={str(k): str(v) for k, v in env.items()},
            )
        elif url:
            transport = RemoteTransport(url=str(url))
        else:
            raise ParseError(f"MCP server {name!r} has neither 'command' nor 'url'")
        return cls(name=name, transport=transport, enabled=bool(data.get("enabled", True)))


@dataclass
class SyncResult:
    """Outcome of projecting the registry into the external tool's config."""

    path: Path
    ok: bool = True
    error: str = ""

    @property
    def degraded(self) -> bool:
        return not self.ok


@dataclass
class InstallResult:
    """Outcome of the install pipeline. ``failed_step`` is empty on success."""

    source: str
    name: str = ""
    failed_step: str = ""
    error: str = ""
    output: str = ""
    install_dir: Path | None = None
    entry_point: Path | None = None
    entry_point_exists: bool = False
    build_ok: bool = True
    build_output: str = ""
    sync: SyncResult | None = None

    @property
    def ok(self) -> bool:
        return not self.failed_step


@dataclass
class ProbeResult:
    """Outcome of a connectivity check. Unreachable is a result, not an error."""

    reachable: bool
    reason: str = ""
    server_name: str | None = None
    detail: str = ""

    @classmethod
    def ok(cls, server_name: str | None = None, reason: str = "", detail: str = "") -> ProbeResult:
        return cls(True, reason=reason, server_name=server_name, detail=detail)

    @classmethod
    def unreachable(cls, reason: str, detail: str = "") -> ProbeResult:
        return cls(False, reason=reason, detail=detail)
