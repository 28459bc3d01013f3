"""Deterministic canonical JSON serialization for event payloads and settings."""

from __future__ import annotations

import json
import math
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any


class CanonicalJsonTypeError(TypeError):
    """Raised when an object cannot be serialized to canonical JSON."""


def _iso(value: date | datetime) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value.isoformat()


def to_json_safe(obj: Any, path: str = "$") -> Any:
    """Return a copy of ``obj`` made of JSON primitives only.

    Database rows carry ``datetime``, ``Decimal`` and ``UUID`` values; those are
    normalized to strings/numbers. Anything else that is not a JSON primitive
    raises ``CanonicalJsonTypeError``. Non-finite floats raise ``ValueError``.
    """
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float at {path}: {obj!r}")
        return obj
    if isinstance(obj, Decimal):
        if not obj.is_finite():
            raise ValueError(f"Non-finite decimal at {path}: {obj!r}")
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    if isinstance(obj, (datetime, date)):
        return _iso(obj)
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(
                    f"Unsupported key type at {path}: {type(key).__name__}"
                )
            out[key] = to_json_safe(value, f"{path}.{key}")
        return out
    if isinstance(obj, (list, tuple)):
        return [to_json_safe(item, f"{path}[{idx}]") for idx, item in enumerate(obj)]
    raise CanonicalJsonTypeError(
        f"Unsupported type at {path}: {type(obj).__name__}"
    )


def canonical_dumps(obj: Any) -> str:
    """Serialize an object to deterministic canonical JSON.

    Rules:
    - Sort dict keys recursively.
    - Preserve list order.
    - UTF-8 with non-ASCII preserved.
    - No extra whitespace.
    """
    return json.dumps(
        to_json_safe(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
