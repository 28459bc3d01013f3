"""Stable fingerprints for tenant settings documents."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps


def settings_fingerprint(settings: Any) -> str:
    """Return the canonical SHA-256 fingerprint of a settings document.

    ``None`` and ``{}`` fingerprint identically since both mean "no settings".
    """
    data = canonical_dumps(settings or {}).encode("utf-8")
    return "sha256:" + hashlib.sha256(data).hexdigest()
