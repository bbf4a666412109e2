"""Configuration: env, paths, probe tunables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .errors import ParseError

DEFAULT_PROBE_GRACE = 3.0
DEFAULT_HTTP_TIMEOUT = 10.0


@dataclass
class Config:
    home_dir: Path = field(default_factory=lambda: Path.home() / ".openclaw")
    external_store_path: Path = field(
        default_factory=lambda: Path.home() / ".mcporter" / "mcporter.json"
    )
    node_command: str = "node"
    probe_grace: float = DEFAULT_PROBE_GRACE
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    verbose: bool = False

    @property
    def mcp_store_path(self) -> Path:
        return self.home_dir / "mcps.json"

    @property
    def install_root(self) -> Path:
        return self.home_dir / "mcps"

    @property
    def document_path(self) -> Path:
        return self.home_dir / "openclaw.json"

    @property
    def settings_path(self) -> Path:
        return self.home_dir / "settings.json"


def _seconds(value: object, source: str) -> float:
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ParseError(f"{source} must be a number of seconds, got {value!r}") from e
    if not seconds >= 0:
        raise ParseError(f"{source} must be a non-negative number, got {value!r}")
    return seconds


def _apply_settings(config: Config, path: Path) -> None:
    """Apply clawmgr's own settings.json to config."""
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ParseError(f"Failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        return
    if "nodeCommand" in data:
        config.node_command = str(data["nodeCommand"])
    if "probeGraceSeconds" in data:
        config.probe_grace = _seconds(data["probeGraceSeconds"], f"probeGraceSeconds in {path}")
    if "httpTimeoutSeconds" in data:
        config.http_timeout = _seconds(data["httpTimeoutSeconds"], f"httpTimeoutSeconds in {path}")
    if "mcporterConfig" in data:
        config.external_store_path = Path(str(data["mcporterConfig"])).expanduser()


def load_config(
    home: str | None = None,
    verbose: bool = False,
) -> Config:
    """Load config with priority: CLI args > env > .env > settings.json > defaults."""
    load_dotenv()

    config = Config()
    config.verbose = verbose

    if env_home := os.getenv("OPENCLAW_HOME"):
        config.home_dir = Path(env_home).expanduser()
    if home:
        config.home_dir = Path(home).expanduser()

    _apply_settings(config, config.settings_path)

    if env_external := os.getenv("MCPORTER_CONFIG"):
        config.external_store_path = Path(env_external).expanduser()
    if env_node := os.getenv("CLAWMGR_NODE"):
        config.node_command = env_node
    if env_grace := os.getenv("CLAWMGR_PROBE_GRACE"):
        config.probe_grace = _seconds(env_grace, "CLAWMGR_PROBE_GRACE")
    if env_timeout := os.getenv("CLAWMGR_HTTP_TIMEOUT"):
        config.http_timeout = _seconds(env_timeout, "CLAWMGR_HTTP_TIMEOUT")

    return config
