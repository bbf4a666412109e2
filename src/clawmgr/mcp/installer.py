"""MCP install lifecycle: install from git, uninstall, companion tool, plugins."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from clawmgr.core.errors import (
    ClawError,
    DependencyInstallFailed,
    ExternalCommandFailed,
    FetchFailed,
    InvalidSource,
    IoError,
)
from clawmgr.core.shell import CommandOutput, command_exists, npm_command, run_command

from .models import InstallResult, ServerDescriptor, StdioTransport, SyncResult
from .registry import MCPRegistry

if TYPE_CHECKING:
    from clawmgr.core.config import Config

logger = logging.getLogger(__name__)

Runner = Callable[..., CommandOutput]

COMPANION_COMMAND = "mcporter"
COMPANION_PACKAGE = "mcporter"
PLATFORM_COMMAND = "openclaw"

STEP_RESOLVE = "resolve"
STEP_PREPARE = "prepare"
STEP_FETCH = "fetch"
STEP_DEPENDENCIES = "dependencies"
STEP_BUILD = "build"
STEP_REGISTER = "register"


def check_name(name: str) -> str:
    """Return *name* if it is usable as a single directory under the install root."""
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\0" in name:
        raise InvalidSource(f"Invalid MCP server name: {name!r}")
    return name


def resolve_name(url: str) -> str:
    """Derive the server name from a git URL.

    ``https://github.com/org/foo-mcp.git`` and ``https://github.com/org/foo-mcp/``
    both give ``foo-mcp``; scp-style ``git@host:org/foo-mcp.git`` works too.
    """
    s = url.strip().rstrip("/").removesuffix(".git").rstrip("/")
    name = s.rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    try:
        return check_name(name)
    except InvalidSource:
        raise InvalidSource(f"Could not extract repository name from URL: {url!r}") from None


def find_entry_point(install_dir: Path) -> tuple[Path, bool]:
    """Return (entry point, exists). Prefers the built ``dist/index.js``."""
    built = install_dir / "dist" / "index.js"
    if built.is_file():
        return built, True
    root = install_dir / "index.js"
    if root.is_file():
        return root, True
    return built, False


class MCPInstaller:
    """Installs git-hosted MCP servers under the install root and registers them."""

    def __init__(self, config: Config, registry: MCPRegistry, runner: Runner = run_command) -> None:
        self.config = config
        self.registry = registry
        self.runner = runner

    def install_dir(self, name: str) -> Path:
        """The directory *name* installs into; rejects names that would escape the root."""
        target = self.config.install_root / check_name(name)
        if target.resolve().parent != self.config.install_root.resolve():
            raise InvalidSource(f"{target} is not directly under {self.config.install_root}")
        return target

    # ── install ─────────────────────────────────────────────────────

    def install(self, url: str) -> InstallResult:
        """Run the install pipeline; the result names the step that failed, if any."""
        result = InstallResult(source=url)
        step = STEP_RESOLVE
        try:
            result.name = resolve_name(url)
            logger.info("installing MCP server %s from %s", result.name, url)

            step = STEP_PREPARE
            target = self._prepare(result.name)
            result.install_dir = target

            step = STEP_FETCH
            self._run(FetchFailed, step, ["git", "clone", url, str(target)])

            step = STEP_DEPENDENCIES
            self._run(DependencyInstallFailed, step, [npm_command(), "install"], cwd=target)

            step = STEP_BUILD
            build = self.runner([npm_command(), "run", "build"], cwd=target)
            if not build.ok:
                result.build_ok = False
                result.build_output = build.diagnostics
                logger.warning(
                    "npm run build failed for %s (may not have a build step): %s",
                    result.name,
                    build.diagnostics,
                )

            step = STEP_REGISTER
            entry, exists = find_entry_point(target)
            result.entry_point = entry
            result.entry_point_exists = exists
            if not exists:
                logger.warning("no entry point found for %s; registered %s anyway", result.name, entry)
            desc = ServerDescriptor(
                name=result.name,
                transport=StdioTransport(command=self.config.node_command, args=[str(entry), "--stdio"]),
                enabled=True,
            )
            result.sync = self.registry.put(desc)
        except ExternalCommandFailed as e:
            return self._failed(result, e.step, str(e), e.output)
        except ClawError as e:
            return self._failed(result, step, str(e))

        logger.info("installed MCP server %s", result.name)
        return result

    def _prepare(self, name: str) -> Path:
        target = self.install_dir(name)
        try:
            if target.exists():
                logger.info("removing existing installation at %s", target)
                shutil.rmtree(target)
            self.config.install_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IoError(f"Failed to prepare {target}: {e}") from e
        return target

    def _run(
        self,
        error: type[ExternalCommandFailed],
        step: str,
        args: list[str],
        cwd: Path | None = None,
    ) -> CommandOutput:
        out = self.runner(args, cwd=cwd)
        if not out.ok:
            raise error(step, out.returncode, out.diagnostics)
        return out

    def _failed(self, result: InstallResult, step: str, error: str, output: str = "") -> InstallResult:
        logger.error("install of %s failed at %s: %s", result.name or result.source, step, error)
        result.failed_step = step
        result.error = error
        result.output = output
        return result

    # ── uninstall ───────────────────────────────────────────────────

    def uninstall(self, name: str) -> SyncResult:
        target = self.install_dir(name)
        if target.exists():
            try:
                shutil.rmtree(target)
            except OSError as e:
                raise IoError(f"Failed to remove MCP directory {target}: {e}") from e
            logger.info("removed directory %s", target)
        _, sync = self.registry.delete(name)
        logger.info("uninstalled MCP server %s", name)
        return sync

    # ── companion tool (mcporter) ───────────────────────────────────

    def companion_installed(self) -> bool:
        return command_exists(COMPANION_COMMAND)

    def install_companion(self) -> CommandOutput:
        return self._run(
            ExternalCommandFailed, "npm install -g", [npm_command(), "install", "-g", COMPANION_PACKAGE]
        )

    def uninstall_companion(self) -> CommandOutput:
        return self._run(
            ExternalCommandFailed,
            "npm uninstall -g",
            [npm_command(), "uninstall", "-g", COMPANION_PACKAGE],
        )

    # ── platform plugins ────────────────────────────────────────────

    def install_plugin(self, url: str) -> CommandOutput:
        """Hand *url* to the platform's own plugin installer."""
        return self._run(
            ExternalCommandFailed, "openclaw plugins install", [PLATFORM_COMMAND, "plugins", "install", url]
        )
