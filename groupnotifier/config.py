"""Hierarchical configuration store with dotted, case-insensitive keys."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

_MISSING = object()

_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})


def _split(key: str) -> list[str]:
    return key.lower().split(".")


def _normalise(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k).lower(): _normalise(v) for k, v in value.items()}
    return value


def _find(tree: dict, parts: list[str]) -> Any:
    node: Any = tree
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _merged(base: dict, override: dict) -> dict:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merged(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _to_str(value: Any) -> str:
    if value is None or isinstance(value, (Mapping, list, tuple, set)):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (bool, int)):
        return int(value)
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if "." in text and text.rstrip("0").endswith("."):
            text = text.rstrip("0")[:-1]
        try:
            return int(text, 0)
        except ValueError:
            return 0
    return 0


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip() in _TRUE_STRINGS
    return False


class Config:
    """Configuration values addressed by dotted keys, with a layer of defaults.

    Explicitly set values take precedence over defaults. Keys are case-insensitive.
    """

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._overrides: dict = {}
        self._defaults: dict = {}
        for key, value in (values or {}).items():
            self.set(key, value)

    @staticmethod
    def _store(tree: dict, key: str, value: Any) -> None:
        parts = _split(key)
        node = tree
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = _normalise(value)

    def set(self, key: str, value: Any) -> None:
        """Set a value that overrides any default."""
        self._store(self._overrides, key, value)

    def set_default(self, key: str, value: Any) -> None:
        """Set the value used when nothing has been set for the key."""
        self._store(self._defaults, key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value at key, or default when neither a value nor a default exists."""
        parts = _split(key)
        override = _find(self._overrides, parts)
        fallback = _find(self._defaults, parts)
        if override is _MISSING and fallback is _MISSING:
            return default
        if override is _MISSING:
            return copy.deepcopy(fallback)
        if isinstance(override, dict) and isinstance(fallback, dict):
            return _merged(fallback, override)
        return copy.deepcopy(override)

    def is_set(self, key: str) -> bool:
        """Whether the key has a value or a default."""
        parts = _split(key)
        return _find(self._overrides, parts) is not _MISSING or _find(self._defaults, parts) is not _MISSING

    def get_str(self, key: str) -> str:
        return _to_str(self.get(key))

    def get_int(self, key: str) -> int:
        return _to_int(self.get(key))

    def get_bool(self, key: str) -> bool:
        return _to_bool(self.get(key))

    def get_map(self, key: str) -> dict[str, Any]:
        value = self.get(key)
        return value if isinstance(value, dict) else {}

    def get_str_map(self, key: str) -> dict[str, str]:
        return {name: _to_str(value) for name, value in self.get_map(key).items()}