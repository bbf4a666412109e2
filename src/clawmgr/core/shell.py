"""Command runner: spawn external tools with captured output and an extended PATH."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import IoError

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"
DEFAULT_TIMEOUT = 600


@dataclass
class CommandOutput:
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def diagnostics(self) -> str:
        """stderr if the tool wrote any, otherwise stdout."""
        return self.stderr.strip() or self.stdout.strip()


def npm_command() -> str:
    return "npm.cmd" if IS_WINDOWS else "npm"


def extended_path() -> str:
    """PATH plus the usual locations of node, npm-global and user-installed tools.

    GUI launches often start with a minimal PATH that misses these.
    """
    home = Path.home()
    extra = [
        home / ".local" / "bin",
        home / ".npm-global" / "bin",
        home / ".volta" / "bin",
        home / ".bun" / "bin",
        home / ".cargo" / "bin",
    ]
    if IS_WINDOWS:
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            extra.append(Path(appdata) / "npm")
        extra.append(Path(os.environ.get("ProgramFiles", r"C:\Program Files")) / "nodejs")
    else:
        extra += [Path("/opt/homebrew/bin"), Path("/usr/local/bin"), Path("/usr/bin"), Path("/bin")]
        nvm_versions = home / ".nvm" / "versions" / "node"
        if nvm_versions.is_dir():
            extra += sorted((p / "bin" for p in nvm_versions.iterdir()), reverse=True)

    current = os.environ.get("PATH", "")
    parts = [p for p in current.split(os.pathsep) if p]
    for p in extra:
        s = str(p)
        if s not in parts:
            parts.append(s)
    return os.pathsep.join(parts)


def child_env(overrides: dict[str, str] | None = None) -> dict[str, str]:
    env = os.environ.copy()
    if overrides:
        env.update(overrides)
    env["PATH"] = extended_path()
    return env


def command_exists(name: str) -> bool:
    return shutil.which(name, path=extended_path()) is not None


def run_command(
    args: list[str],
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> CommandOutput:
    """Run *args* to completion and capture its output.

    A nonzero exit is returned, not raised. Failing to start the executable
    or exceeding *timeout* raises IoError.
    """
    logger.debug("running %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(
            args,
            cwd=str(cwd) if cwd else None,
            env=child_env(env),
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise IoError(f"Failed to run {args[0]}: command not found") from e
    except subprocess.TimeoutExpired as e:
        raise IoError(f"{' '.join(args)} timed out after {timeout}s") from e
    except OSError as e:
        raise IoError(f"Failed to run {args[0]}: {e}") from e
    return CommandOutput(args, result.returncode, result.stdout or "", result.stderr or "")
