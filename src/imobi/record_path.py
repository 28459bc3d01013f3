"""Dotted-path lookup into record dictionaries (``contact.name``)."""

from __future__ import annotations

from typing import Any


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - simple formatting
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def _step(current: Any, key: str) -> Any:
    if isinstance(current, dict):
        return current.get(key, MISSING)
    if isinstance(current, (list, tuple)) and key.isdigit():
        idx = int(key)
        return current[idx] if idx < len(current) else MISSING
    return MISSING


def get_path(obj: Any, path: str, default: Any = None) -> Any:
    """Walk ``path`` segment by segment; any missing hop yields ``default``."""
    if not isinstance(path, str) or not path:
        return default
    current = obj
    for part in path.split("."):
        current = _step(current, part)
        if current is MISSING:
            return default
    return current


def has_path(obj: Any, path: str) -> bool:
    return get_path(obj, path, MISSING) is not MISSING
