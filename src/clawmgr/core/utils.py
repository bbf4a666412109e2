"""JSON file helpers, output truncation, path display."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from .errors import IoError, ParseError

MAX_OUTPUT_BYTES = 16 * 1024  # 16KB


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON document; a missing file yields *default*.

    A UTF-8 BOM is tolerated since some Windows editors add one.
    """
    if not path.exists():
        return default
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise IoError(f"Failed to read {path}: {e}") from e
    content = content.removeprefix("\ufeff")
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(f"Failed to parse {path}: {e}") from e


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def write_json_atomic(path: Path, data: Any) -> None:
    """Write *data* to *path* via a sibling temp file and ``os.replace``.

    Readers see either the old document or the new one, never a partial
    write.
    """
    content = dump_json(data)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise IoError(f"Failed to write {path}: {e}") from e


def truncate(text: str, max_bytes: int = MAX_OUTPUT_BYTES) -> str:
    """Truncate text to max_bytes."""
    encoded = text.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return text
    truncated = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return truncated + f"\n\n... [truncated, {len(encoded)} bytes total]"


def short_path(p: Path) -> str:
    """Return path relative to home directory, using ~ prefix."""
    try:
        rel = p.relative_to(Path.home())
        return f"~/{rel}" if str(rel) != "." else "~"
    except ValueError:
        return str(p)
