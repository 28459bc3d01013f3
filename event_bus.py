"""Domain events for record changes, with strict envelope validation."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from imobi.canonical_json import CanonicalJsonTypeError, canonical_dumps, to_json_safe


Event = Dict[str, Any]
Handler = Callable[[Event], None]

EVENT_TYPES = ("created", "updated", "deleted", "stage_changed", "status_changed")
ENTITY_TYPES = ("contact", "deal", "pipeline", "activity")

logger = logging.getLogger("imobi.events")


@dataclass
class EventError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class EventValidationError(EventError):
    code: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


def _raise(code: str, message: str, path: str | None = None) -> None:
    raise EventValidationError(code=code, message=message, path=path)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _require_string(event: dict, key: str, code: str) -> None:
    value = event.get(key)
    if not isinstance(value, str) or not value:
        _raise(code, f"{key} must be non-empty string", key)


def _validate_payload(payload: Any) -> None:
    if not isinstance(payload, dict):
        _raise("PAYLOAD_INVALID", "payload must be an object", "payload")
    # canonical_dumps rejects non-JSON values and NaN/Inf
    try:
        canonical_dumps(payload)
    except (CanonicalJsonTypeError, TypeError, ValueError) as exc:
        _raise("PAYLOAD_INVALID", str(exc), "payload")


def _validate_created_at(value: Any) -> None:
    if not isinstance(value, str) or not value.endswith("Z"):
        _raise("EVENT_CREATED_AT_INVALID", "created_at must be an ISO8601 string ending with 'Z'", "created_at")
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        _raise("EVENT_CREATED_AT_INVALID", "created_at must be ISO8601", "created_at")


def validate_event(event: Any) -> None:
    if not isinstance(event, dict):
        _raise("EVENT_INVALID", "event must be object")
    _require_string(event, "id", "EVENT_ID_INVALID")
    _require_string(event, "tenant_id", "EVENT_TENANT_INVALID")
    if event.get("entity_type") not in ENTITY_TYPES:
        _raise("EVENT_ENTITY_TYPE_INVALID", f"entity_type must be one of {list(ENTITY_TYPES)}", "entity_type")
    _require_string(event, "entity_id", "EVENT_ENTITY_ID_INVALID")
    if event.get("event_type") not in EVENT_TYPES:
        _raise("EVENT_TYPE_INVALID", f"event_type must be one of {list(EVENT_TYPES)}", "event_type")
    _validate_payload(event.get("payload"))
    if not isinstance(event.get("processed"), bool):
        _raise("EVENT_PROCESSED_INVALID", "processed must be boolean", "processed")
    _validate_created_at(event.get("created_at"))


def make_event(
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    event_type: str,
    payload: dict | None = None,
) -> Event:
    """Build an unprocessed event envelope; payload values are made JSON-safe."""
    try:
        safe_payload = to_json_safe(copy.deepcopy(payload if payload is not None else {}))
    except (CanonicalJsonTypeError, ValueError) as exc:
        _raise("PAYLOAD_INVALID", str(exc), "payload")
    event = {
        "id": str(uuid.uuid4()),
        "tenant_id": tenant_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "event_type": event_type,
        "payload": safe_payload,
        "processed": False,
        "created_at": _now(),
    }
    validate_event(event)
    return event


class EventBus:
    """Appends events to a log and fans them out to in-process subscribers.

    ``log`` is anything with ``append(event) -> dict``: the in-memory
    :class:`outbox.Outbox` or the ``events`` table adapter.
    """

    def __init__(self, log: Any = None) -> None:
        self._log = log
        self._subs: Dict[str, List[Handler]] = {}

    def subscribe(self, event_type: str, handler: Handler) -> None:
        self._subs.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> bool:
        handlers = self._subs.get(event_type)
        if not handlers:
            return False
        try:
            handlers.remove(handler)
            if not handlers:
                del self._subs[event_type]
            return True
        except ValueError:
            return False

    def publish(self, event: dict) -> dict:
        validate_event(event)
        stored = self._log.append(event) if self._log is not None else copy.deepcopy(event)
        for handler in self._subs.get(event["event_type"], []):
            try:
                handler(copy.deepcopy(stored))
            except Exception:
                logger.exception(
                    "event_handler_failed event_id=%s event_type=%s handler=%s",
                    event["id"],
                    event["event_type"],
                    getattr(handler, "__name__", repr(handler)),
                )
        return stored
