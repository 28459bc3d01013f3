"""Error taxonomy for the CRM service layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class CrmError(Exception):
    code: str
    message: str
    path: str | None = None
    detail: dict | None = None
    status: int = 400
    issues: List[dict] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def to_issues(self) -> List[dict]:
        if self.issues:
            return list(self.issues)
        return [{"code": self.code, "message": self.message, "path": self.path, "detail": self.detail}]


class ConfigurationError(CrmError):
    """Tenant configuration is missing or broken. Clients only see a generic message."""

    PUBLIC_MESSAGE = "Tenant configuration is unavailable. Please contact support."

    def __init__(self, message: str, issues: List[dict] | None = None, detail: dict | None = None) -> None:
        super().__init__("CONFIGURATION_ERROR", message, None, detail, 500, list(issues or []))

    def to_issues(self) -> List[dict]:
        return [{"code": self.code, "message": self.PUBLIC_MESSAGE, "path": None, "detail": None}]


class FieldPermissionError(CrmError):
    def __init__(self, forbidden_fields: List[str], reasons: Dict[str, str] | None = None) -> None:
        reasons = reasons or {}
        issues = [
            {
                "code": "FIELD_FORBIDDEN",
                "message": reasons.get(name) or "Permission denied",
                "path": name,
                "detail": None,
            }
            for name in forbidden_fields
        ]
        super().__init__(
            "FIELD_FORBIDDEN",
            "You do not have permission to edit these fields",
            None,
            None,
            403,
            issues,
            {"forbidden_fields": list(forbidden_fields)},
        )


class ComputedFieldWriteError(CrmError):
    def __init__(self, computed_fields: List[str]) -> None:
        issues = [
            {
                "code": "COMPUTED_FIELD_READ_ONLY",
                "message": "Computed fields are read-only",
                "path": name,
                "detail": None,
            }
            for name in computed_fields
        ]
        super().__init__(
            "COMPUTED_FIELD_READ_ONLY",
            "Computed fields are read-only",
            None,
            None,
            403,
            issues,
            {"computed_fields": list(computed_fields)},
        )


class RecordValidationError(CrmError):
    def __init__(self, issues: List[dict]) -> None:
        first = issues[0] if issues else {}
        super().__init__(
            first.get("code") or "VALIDATION_ERROR",
            first.get("message") or "Validation failed",
            first.get("path"),
            first.get("detail"),
            400,
            list(issues),
        )


class RecordNotFoundError(CrmError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("RECORD_NOT_FOUND", message, path, None, 404)


class ForbiddenError(CrmError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("FORBIDDEN", message, path, None, 403)


class TenantMismatchError(CrmError):
    def __init__(self, message: str = "tenant_id does not match the request tenant") -> None:
        super().__init__("TENANT_MISMATCH", message, "tenant_id", None, 403)


class TenantNotFoundError(CrmError):
    def __init__(self, tenant_id: str) -> None:
        super().__init__("TENANT_NOT_FOUND", "Tenant not found", "tenant_id", {"tenant_id": tenant_id}, 404)


class ResolutionError(CrmError):
    """Formula/relation evaluation failure; collapsed to null on reads."""

    def __init__(self, code: str, message: str, path: str | None = None) -> None:
        super().__init__(code, message, path, None, 500)


class DeliveryError(CrmError):
    """Event emission failure; logged, never returned to a client."""

    def __init__(self, message: str, detail: dict | None = None) -> None:
        super().__init__("EVENT_DELIVERY_FAILED", message, None, detail, 500)


@dataclass
class Resolution:
    """Outcome of resolving one computed field."""

    ok: bool
    value: Any = None
    error: ResolutionError | None = None

    @classmethod
    def success(cls, value: Any) -> "Resolution":
        return cls(True, value)

    @classmethod
    def failure(cls, code: str, message: str, path: str | None = None) -> "Resolution":
        return cls(False, None, ResolutionError(code, message, path))

    def to_dict(self) -> dict:
        if self.ok:
            return {"success": True, "value": self.value}
        return {"success": False, "error": self.error.message if self.error else "Unknown error"}
