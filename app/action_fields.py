"""Action fields: custom-field buttons that emit an automation event when clicked.

A button is a ``custom_fields`` row with ``field_type='button'``; its options
carry the action config. Clicking runs the caller through the same custom
field permission rule as an edit, then emits an ``updated`` event with
``action='button_click'`` for the automation dispatcher to pick up.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from field_permissions import CUSTOM_FIELD_PREFIX, ROLES, can_edit_field
from imobi.record_path import MISSING, get_path

from app.custom_fields import get_definition
from app.errors import CrmError, ForbiddenError

logger = logging.getLogger("imobi.actions")

ACTION_TYPES = ("webhook", "event")
BUTTON_FIELD_TYPE = "button"

_PLACEHOLDER = re.compile(r"\{([^}]+)\}")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ActionFieldNotFoundError(CrmError):
    def __init__(self, field_name: str) -> None:
        super().__init__(
            "ACTION_FIELD_NOT_FOUND",
            f'Field "{field_name}" is not configured as an action field',
            "field_name",
            None,
            404,
        )


@dataclass(frozen=True)
class ActionFieldConfig:
    action: str
    automation_key: str | None = None
    payload_template: Dict[str, Any] = field(default_factory=dict)
    label: str | None = None
    confirm_message: str | None = None
    required_role: str | None = None

    @classmethod
    def from_options(cls, options: dict) -> "ActionFieldConfig":
        template = options.get("payload_template")
        return cls(
            action=options.get("action"),
            automation_key=options.get("automation_key") or None,
            payload_template=dict(template) if isinstance(template, dict) else {},
            label=options.get("label") or None,
            confirm_message=options.get("confirm_message") or None,
            required_role=options.get("required_role") or None,
        )


@dataclass
class ActionInvocation:
    """A permitted click, ready to be emitted as a button-click event."""

    entity_type: str
    entity_id: str
    field_name: str
    metadata: Dict[str, Any]
    executed_at: str


def validate_action_field_config(options: Any) -> dict:
    if not isinstance(options, dict):
        return {"valid": False, "errors": ["options must be an object"]}
    errors: List[str] = []
    if options.get("action") not in ACTION_TYPES:
        errors.append('Invalid action type. Must be "webhook" or "event"')
    if options.get("required_role") and options["required_role"] not in ROLES:
        errors.append("Invalid required_role")
    if options.get("payload_template") is not None and not isinstance(options["payload_template"], dict):
        errors.append("payload_template must be an object")
    return {"valid": not errors, "errors": errors}


def _replace_placeholders(text: str, variables: Dict[str, Any]) -> str:
    def substitute(match: re.Match) -> str:
        value = get_path(variables, match.group(1).strip(), MISSING)
        if value is MISSING:
            return match.group(0)
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(substitute, text)


def build_payload(template: Dict[str, Any], variables: Dict[str, Any]) -> Dict[str, Any]:
    """Fill ``{record.title}``-style placeholders; unknown placeholders stay as written."""
    result: Dict[str, Any] = {}
    for key, value in template.items():
        if isinstance(value, str):
            result[key] = _replace_placeholders(value, variables)
        elif isinstance(value, dict):
            result[key] = build_payload(value, variables)
        else:
            result[key] = value
    return result


def get_action_field_config(store, tenant_id: str, entity_type: str, field_name: str) -> ActionFieldConfig | None:
    definition = get_definition(store, tenant_id, entity_type, field_name)
    if not definition or definition.get("field_type") != BUTTON_FIELD_TYPE:
        return None
    check = validate_action_field_config(definition.get("options"))
    if not check["valid"]:
        logger.warning(
            "action_field_invalid tenant_id=%s entity_type=%s field=%s errors=%s",
            tenant_id,
            entity_type,
            field_name,
            check["errors"],
        )
        return None
    return ActionFieldConfig.from_options(definition["options"])


def prepare_action(
    tenant_id: str,
    role: str,
    user_id: str | None,
    entity_type: str,
    record: dict,
    field_name: str,
    config: ActionFieldConfig,
    context: dict | None = None,
) -> ActionInvocation:
    """Check the caller may click ``field_name`` and build the event metadata.

    Raises ``ForbiddenError`` when the role is below the button's
    ``required_role`` or cannot edit custom fields at all.
    """
    rule = {"required_role": config.required_role} if config.required_role else None
    check = can_edit_field(role, entity_type, f"{CUSTOM_FIELD_PREFIX}{field_name}", rule)
    if not check.allowed:
        logger.info(
            "action_forbidden tenant_id=%s field=%s role=%s reason=%s",
            tenant_id,
            field_name,
            role,
            check.reason,
        )
        raise ForbiddenError(check.reason or "Permission denied", field_name)
    entity_id = record["id"]
    payload = build_payload(
        config.payload_template,
        {
            "record": {**record, **(context or {})},
            "user": {"id": user_id, "role": role},
            "tenant": {"id": tenant_id},
            "context": {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "field_name": field_name,
                "automation_key": config.automation_key,
            },
        },
    )
    metadata: Dict[str, Any] = {"automation_key": config.automation_key, "payload": payload}
    if user_id:
        metadata["user_id"] = user_id
    return ActionInvocation(entity_type, entity_id, field_name, metadata, _now())
