"""Field-level role permissions for record writes.

Single rule table consulted by every write path. Roles are totally ordered
``viewer < member < manager < admin``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

ROLE_HIERARCHY: Dict[str, int] = {
    "viewer": 0,
    "member": 1,
    "manager": 2,
    "admin": 3,
}
ROLES = tuple(ROLE_HIERARCHY)

# Never writable through generic assignment, whatever the role.
UNIVERSAL_SYSTEM_FIELDS = frozenset({"id", "tenant_id", "created_at", "updated_at"})
# Pipeline workflow state; moved through stage transitions, admins may assign directly.
WORKFLOW_FIELDS = frozenset({"pipeline_id", "stage_id", "status", "closed_at"})
SYSTEM_FIELDS = UNIVERSAL_SYSTEM_FIELDS | WORKFLOW_FIELDS

MEMBER_EDITABLE_FIELDS = frozenset(
    {"title", "value", "expected_close_date", "assigned_to", "contact_id", "custom_fields"}
)
MEMBER_PERSON_FIELDS = frozenset({"name", "email", "phone", "source"})
PERSON_ENTITY_TYPES = frozenset({"lead", "contact"})

CUSTOM_FIELDS_KEY = "custom_fields"
CUSTOM_FIELD_PREFIX = "custom_fields."

ENTITY_FIELDS: Dict[str, tuple] = {
    "deal": (
        "title",
        "value",
        "expected_close_date",
        "pipeline_id",
        "stage_id",
        "status",
        "contact_id",
        "assigned_to",
        "closed_at",
        "custom_fields",
    ),
    "lead": (
        "name",
        "email",
        "phone",
        "source",
        "type",
        "pipeline_id",
        "stage_id",
        "status",
        "assigned_to",
        "custom_fields",
    ),
    "contact": (
        "name",
        "email",
        "phone",
        "source",
        "type",
        "status",
        "assigned_to",
        "custom_fields",
    ),
}


@dataclass(frozen=True)
class PermissionResult:
    allowed: bool
    reason: str | None = None

    def to_dict(self) -> dict:
        out: dict = {"allowed": self.allowed}
        if self.reason:
            out["reason"] = self.reason
        return out


@dataclass(frozen=True)
class PermissionContext:
    role: str
    entity_type: str
    custom_field_configs: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


_ALLOWED = PermissionResult(True)


def role_at_least(role: str | None, required: str | None) -> bool:
    if required is None:
        return True
    if role not in ROLE_HIERARCHY or required not in ROLE_HIERARCHY:
        return False
    return ROLE_HIERARCHY[role] >= ROLE_HIERARCHY[required]


def is_system_field(field_name: str) -> bool:
    return field_name in SYSTEM_FIELDS


def is_custom_field_key(field_name: str) -> bool:
    return field_name == CUSTOM_FIELDS_KEY or field_name.startswith(CUSTOM_FIELD_PREFIX)


def _custom_field_name(field_name: str) -> str | None:
    if field_name.startswith(CUSTOM_FIELD_PREFIX):
        return field_name[len(CUSTOM_FIELD_PREFIX) :] or None
    return None


def _custom_field_rule(role: str, config: Mapping[str, Any] | None) -> PermissionResult:
    if not config:
        return _ALLOWED
    required = config.get("required_role")
    if required and not role_at_least(role, required):
        return PermissionResult(False, f"Field requires {required} role or higher")
    if config.get("is_editable") is False:
        return PermissionResult(False, "Field is not editable")
    return _ALLOWED


def can_edit_field(
    role: str,
    entity_type: str,
    field_name: str,
    custom_field_config: Mapping[str, Any] | None = None,
) -> PermissionResult:
    if role == "viewer":
        return PermissionResult(False, "Viewer role has read-only access")
    if role not in ROLE_HIERARCHY:
        return PermissionResult(False, "Unknown role")
    if field_name in UNIVERSAL_SYSTEM_FIELDS:
        return PermissionResult(False, "System field cannot be modified")
    if role == "admin":
        return _ALLOWED
    if is_system_field(field_name):
        return PermissionResult(False, "System field cannot be modified")
    if is_custom_field_key(field_name):
        return _custom_field_rule(role, custom_field_config)
    if role == "manager":
        return _ALLOWED
    if field_name in MEMBER_EDITABLE_FIELDS:
        return _ALLOWED
    if entity_type in PERSON_ENTITY_TYPES and field_name in MEMBER_PERSON_FIELDS:
        return _ALLOWED
    return PermissionResult(False, "Members can only edit basic fields")


def can_read_field(role: str, entity_type: str, field_name: str) -> PermissionResult:
    """All roles read every field inside their own tenant."""
    if role not in ROLE_HIERARCHY:
        return PermissionResult(False, "Unknown role")
    return _ALLOWED


def _context_check(ctx: PermissionContext, field_name: str) -> PermissionResult:
    name = _custom_field_name(field_name)
    config = ctx.custom_field_configs.get(name) if name else None
    return can_edit_field(ctx.role, ctx.entity_type, field_name, config)


def _expanded_keys(ctx: PermissionContext, update_data: Mapping[str, Any]) -> List[str]:
    keys: List[str] = []
    for key, value in update_data.items():
        if key == CUSTOM_FIELDS_KEY and isinstance(value, dict) and value and ctx.custom_field_configs:
            keys.extend(f"{CUSTOM_FIELD_PREFIX}{name}" for name in value)
        else:
            keys.append(key)
    return keys


def check_field_permissions(
    ctx: PermissionContext, fields: Iterable[str], action: str = "write"
) -> Dict[str, PermissionResult]:
    results: Dict[str, PermissionResult] = {}
    for name in fields:
        if action == "read":
            results[name] = can_read_field(ctx.role, ctx.entity_type, name)
        elif action == "write":
            results[name] = _context_check(ctx, name)
        else:
            results[name] = PermissionResult(False, "Unknown action")
    return results


def validate_update_permissions(ctx: PermissionContext, update_data: Mapping[str, Any]) -> dict:
    """Check every key of ``update_data``; returns ``{valid, forbidden_fields, reasons}``.

    A ``custom_fields`` object is checked per entry when custom field configs
    are known, so each offending custom field is reported by its own path.
    """
    forbidden: List[str] = []
    reasons: Dict[str, str] = {}
    for key in _expanded_keys(ctx, update_data):
        result = _context_check(ctx, key)
        if not result.allowed:
            forbidden.append(key)
            reasons[key] = result.reason or "Permission denied"
    return {"valid": not forbidden, "forbidden_fields": forbidden, "reasons": reasons}


def filter_allowed_fields(ctx: PermissionContext, update_data: Mapping[str, Any]) -> dict:
    return {key: value for key, value in update_data.items() if _context_check(ctx, key).allowed}


def get_editable_fields(role: str, entity_type: str) -> List[str]:
    fields = ENTITY_FIELDS.get(entity_type, ())
    return [name for name in fields if can_edit_field(role, entity_type, name).allowed]


def can_delete(role: str) -> bool:
    return role_at_least(role, "manager")


def can_perform_bulk_operation(role: str) -> bool:
    return role_at_least(role, "manager")
