"""IMOBI kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps, to_json_safe
from .record_path import MISSING, get_path, has_path
from .settings_fingerprint import settings_fingerprint

__all__ = [
    "CanonicalJsonTypeError",
    "MISSING",
    "canonical_dumps",
    "get_path",
    "has_path",
    "settings_fingerprint",
    "to_json_safe",
]
