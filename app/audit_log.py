"""Per-record audit trail read from the event log.

Entries are newest first. A storage failure is logged and yields an empty
trail, so a broken log never breaks the record page that shows it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from app.stores import StoreError

logger = logging.getLogger("imobi.audit")

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def clamp_limit(limit: Any) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return max(1, min(value, MAX_LIMIT))


def determine_actor(payload: Dict[str, Any]) -> str:
    if payload.get("user_name"):
        return str(payload["user_name"])
    if payload.get("user_email"):
        return str(payload["user_email"])
    if payload.get("user_id"):
        return f"User {str(payload['user_id'])[:8]}"
    if payload.get("automation_id") or payload.get("webhook_id"):
        return "Automation"
    return "System"


def normalize_event(event: dict) -> dict:
    payload = event.get("payload") if isinstance(event.get("payload"), dict) else {}
    event_type = event.get("event_type")
    entry: Dict[str, Any] = {
        "id": event.get("id"),
        "timestamp": event.get("created_at"),
        "event_type": event_type,
        "actor": determine_actor(payload),
        "action": "",
        "metadata": payload,
    }
    if event_type == "created":
        entry["action"] = "Created record"
    elif event_type == "updated":
        fields = payload.get("updated_fields")
        if payload.get("action") == "button_click":
            entry["action"] = f"Clicked button: {payload.get('field_name') or 'Unknown'}"
            entry["field"] = payload.get("field_name")
        elif isinstance(fields, list):
            entry["action"] = "Updated fields: " + ", ".join(str(name) for name in fields)
        else:
            entry["action"] = "Updated record"
    elif event_type == "deleted":
        entry["action"] = "Deleted record"
    elif event_type == "stage_changed":
        old = payload.get("from_stage_name") or "Unknown"
        new = payload.get("to_stage_name") or "Unknown"
        entry.update({"action": f'Changed stage from "{old}" to "{new}"', "old_value": old, "new_value": new})
    elif event_type == "status_changed":
        old = payload.get("from_status") or "Unknown"
        new = payload.get("to_status") or "Unknown"
        entry.update({"action": f'Changed status from "{old}" to "{new}"', "old_value": old, "new_value": new})
    else:
        entry["action"] = f"{event_type} event"
    return entry


def fetch_audit_log(event_log, tenant_id: str, entity_type: str, entity_id: str, limit: Any = DEFAULT_LIMIT) -> List[dict]:
    """Normalized entries for one record. ``event_log`` needs ``query(tenant_id, entity_type, entity_id, limit)``."""
    try:
        events = event_log.query(tenant_id, entity_type, entity_id, clamp_limit(limit))
    except StoreError as exc:
        logger.error(
            "audit_log_fetch_failed tenant_id=%s entity_type=%s entity_id=%s error=%s",
            tenant_id,
            entity_type,
            entity_id,
            exc,
        )
        return []
    return [normalize_event(event) for event in events]
