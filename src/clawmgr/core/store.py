"""ConfigStore: the platform's openclaw.json document."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .errors import ParseError
from .utils import read_json, write_json_atomic

_MISSING = object()


class ConfigStore:
    """Load/save the platform's primary JSON document with dotted-path access."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load_document(self) -> dict:
        data = read_json(self.path, default={})
        if not isinstance(data, dict):
            raise ParseError(f"{self.path} must contain a JSON object")
        return data

    def save_document(self, data: dict) -> None:
        write_json_atomic(self.path, data)

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self.load_document()
        for part in _split_key(key):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a dotted key, creating intermediate objects as needed."""
        data = self.load_document()
        parts = _split_key(key)
        node = data
        for part in parts[:-1]:
            child = node.get(part, _MISSING)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
        self.save_document(data)


def _split_key(key: str) -> list[str]:
    parts = [p for p in key.split(".") if p]
    if not parts:
        raise ValueError(f"invalid config key: {key!r}")
    return parts
