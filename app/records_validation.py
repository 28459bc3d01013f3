"""Payload validation for deal and lead records."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List

DEAL_STATUSES = ["open", "won", "lost"]
CONTACT_TYPES = ["lead", "customer", "partner", "other"]
CONTACT_STATUSES = ["active", "inactive", "archived"]

ENTITY_SCHEMAS: Dict[str, Dict[str, dict]] = {
    "deal": {
        "title": {"type": "string", "required": True},
        "value": {"type": "number"},
        "status": {"type": "enum", "options": DEAL_STATUSES},
        "pipeline_id": {"type": "id"},
        "stage_id": {"type": "id"},
        "contact_id": {"type": "id"},
        "assigned_to": {"type": "id"},
        "expected_close_date": {"type": "date"},
        "closed_at": {"type": "datetime"},
        "custom_fields": {"type": "object"},
    },
    "lead": {
        "name": {"type": "string", "required": True},
        "email": {"type": "string"},
        "phone": {"type": "string"},
        "source": {"type": "string"},
        "type": {"type": "enum", "options": CONTACT_TYPES},
        "status": {"type": "enum", "options": CONTACT_STATUSES},
        "assigned_to": {"type": "id"},
        "custom_fields": {"type": "object"},
    },
}


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _check_type(field_id: str, field: dict, val: Any) -> dict | None:
    ftype = field.get("type")
    if ftype == "string":
        if not isinstance(val, str):
            return _issue("TYPE_MISMATCH", f"{field_id} must be a string", field_id)
        if field.get("required") and not val.strip():
            return _issue("EMPTY_VALUE", f"Validation failed: {field_id} cannot be empty", field_id)
    elif ftype == "number":
        if not isinstance(val, (int, float)) or isinstance(val, bool):
            return _issue("TYPE_MISMATCH", f"{field_id} must be a number", field_id)
    elif ftype == "id":
        if not isinstance(val, str) or not val:
            return _issue("TYPE_MISMATCH", f"{field_id} must be an id string", field_id)
    elif ftype == "enum":
        allowed = field.get("options") or []
        if val not in allowed:
            return _issue("INVALID_ENUM", f"{field_id} must be one of {allowed}", field_id)
    elif ftype == "date":
        if not isinstance(val, str):
            return _issue("TYPE_MISMATCH", f"{field_id} must be a date string", field_id)
        try:
            date.fromisoformat(val[:10])
        except ValueError:
            return _issue("INVALID_DATE", f"{field_id} must be YYYY-MM-DD", field_id)
    elif ftype == "datetime":
        if not isinstance(val, str):
            return _issue("TYPE_MISMATCH", f"{field_id} must be a datetime string", field_id)
        try:
            datetime.fromisoformat(val.replace("Z", "+00:00"))
        except ValueError:
            return _issue("INVALID_DATETIME", f"{field_id} must be ISO8601", field_id)
    elif ftype == "object":
        if not isinstance(val, dict):
            return _issue("TYPE_MISMATCH", f"{field_id} must be an object", field_id)
    return None


def validate_record_payload(entity_type: str, data: Any, for_create: bool) -> tuple[List[dict], dict]:
    """Validate ``data`` against the entity schema.

    Returns ``(errors, cleaned)`` where ``cleaned`` has required strings
    trimmed. Every violation is reported, not only the first.
    """
    if not isinstance(data, dict):
        return [_issue("INVALID_PAYLOAD", "Record data must be an object")], {}
    schema = ENTITY_SCHEMAS.get(entity_type)
    if schema is None:
        return [_issue("UNKNOWN_ENTITY", f"Unknown entity type: {entity_type}")], {}
    errors: List[dict] = []
    cleaned = dict(data)

    for key in data:
        if key not in schema:
            errors.append(_issue("UNKNOWN_FIELD", f"Unknown field: {key}", key))

    if for_create:
        for field_id, field in schema.items():
            val = data.get(field_id)
            if field.get("required") and (val is None or (isinstance(val, str) and not val.strip())):
                errors.append(_issue("REQUIRED_FIELD", f"Validation failed: {field_id} is required", field_id))

    for field_id, val in data.items():
        field = schema.get(field_id)
        if not field:
            continue
        if val is None:
            if field.get("required") and not for_create:
                errors.append(_issue("EMPTY_VALUE", f"Validation failed: {field_id} cannot be empty", field_id))
            continue
        if for_create and field.get("required") and isinstance(val, str) and not val.strip():
            continue  # already reported as missing
        issue = _check_type(field_id, field, val)
        if issue:
            errors.append(issue)
        elif field.get("type") == "string" and field.get("required"):
            cleaned[field_id] = val.strip()

    return errors, cleaned
