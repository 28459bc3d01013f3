"""Event emission for record changes.

Emission is fire-and-forget relative to the HTTP response: routes call
:func:`spawn_event`, which runs the (blocking) append on a worker thread in a
detached task. A failed emission is logged as a delivery failure and never
reaches the client. Pending tasks are drained on application shutdown.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Dict, List, Set

import anyio

from event_bus import EventBus, EventError, make_event

from app.errors import DeliveryError
from app.stores import StoreError

logger = logging.getLogger("imobi.events")

_PENDING: Set[asyncio.Task] = set()


class StoreEventLog:
    """Event log backed by the tenant-scoped ``events`` table."""

    def __init__(self, store) -> None:
        self._store = store

    def append(self, event: dict) -> dict:
        return self._store.insert("events", event["tenant_id"], event)

    def query(self, tenant_id: str, entity_type: str, entity_id: str, limit: int | None = None) -> List[dict]:
        return self._store.select(
            "events",
            tenant_id,
            {"entity_type": entity_type, "entity_id": entity_id},
            order_by="created_at",
            descending=True,
            limit=limit,
        )


def event_spec(
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    event_type: str,
    payload: dict | None = None,
) -> Dict[str, Any]:
    return {
        "tenant_id": tenant_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "event_type": event_type,
        "payload": dict(payload or {}),
    }


def stage_change_spec(
    tenant_id: str,
    deal_id: str,
    from_stage_id: str | None,
    to_stage_id: str,
    from_stage_name: str | None = None,
    to_stage_name: str | None = None,
) -> Dict[str, Any]:
    return event_spec(
        tenant_id,
        "deal",
        deal_id,
        "stage_changed",
        {
            "from_stage_id": from_stage_id,
            "to_stage_id": to_stage_id,
            "from_stage_name": from_stage_name,
            "to_stage_name": to_stage_name,
        },
    )


def status_change_spec(tenant_id: str, deal_id: str, from_status: str | None, to_status: str) -> Dict[str, Any]:
    return event_spec(
        tenant_id,
        "deal",
        deal_id,
        "status_changed",
        {"from_status": from_status, "to_status": to_status},
    )


def button_click_spec(
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    button_field_name: str,
    metadata: dict | None = None,
) -> Dict[str, Any]:
    payload = {"action": "button_click", "field_name": button_field_name}
    payload.update(metadata or {})
    return event_spec(tenant_id, entity_type, entity_id, "updated", payload)


def emit_event(
    bus: EventBus,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    event_type: str,
    payload: dict | None = None,
) -> dict:
    """Append one unprocessed event. Returns ``{success, event_id}`` or ``{success, error}``."""
    try:
        event = make_event(tenant_id, entity_type, entity_id, event_type, payload)
        stored = bus.publish(event)
    except (EventError, StoreError) as exc:
        failure = DeliveryError(str(exc), {"tenant_id": tenant_id, "event_type": event_type})
        logger.error(
            "event_emit_failed tenant_id=%s entity_type=%s entity_id=%s event_type=%s error=%s",
            tenant_id,
            entity_type,
            entity_id,
            event_type,
            failure.message,
        )
        return {"success": False, "error": failure.message}
    return {"success": True, "event_id": stored.get("id")}


def emit_stage_change(bus: EventBus, tenant_id: str, deal_id: str, from_stage_id, to_stage_id, from_stage_name=None, to_stage_name=None) -> dict:
    return emit_event(
        bus, **stage_change_spec(tenant_id, deal_id, from_stage_id, to_stage_id, from_stage_name, to_stage_name)
    )


def emit_status_change(bus: EventBus, tenant_id: str, deal_id: str, from_status, to_status) -> dict:
    return emit_event(bus, **status_change_spec(tenant_id, deal_id, from_status, to_status))


def emit_button_click(bus: EventBus, tenant_id: str, entity_type: str, entity_id: str, button_field_name: str, metadata: dict | None = None) -> dict:
    return emit_event(bus, **button_click_spec(tenant_id, entity_type, entity_id, button_field_name, metadata))


async def _deliver(bus: EventBus, spec: Dict[str, Any]) -> dict:
    try:
        return await anyio.to_thread.run_sync(functools.partial(emit_event, bus, **spec))
    except Exception as exc:
        logger.exception(
            "event_delivery_crashed tenant_id=%s event_type=%s",
            spec.get("tenant_id"),
            spec.get("event_type"),
        )
        return {"success": False, "error": str(exc)}


def spawn_event(bus: EventBus, spec: Dict[str, Any]) -> asyncio.Task:
    """Schedule emission without awaiting it. Must be called from a running loop."""
    task = asyncio.create_task(_deliver(bus, spec))
    _PENDING.add(task)
    task.add_done_callback(_PENDING.discard)
    return task


def spawn_events(bus: EventBus, specs: List[Dict[str, Any]]) -> List[asyncio.Task]:
    return [spawn_event(bus, spec) for spec in specs]


def pending_count() -> int:
    return len(_PENDING)


async def drain_pending_events() -> None:
    loop = asyncio.get_running_loop()
    # Tasks from a loop that has since closed can no longer be awaited.
    stale = {task for task in _PENDING if task.done() or task.get_loop() is not loop}
    _PENDING.difference_update(stale)
    if not _PENDING:
        return
    tasks = list(_PENDING)
    logger.info("event_drain pending=%s", len(tasks))
    await asyncio.gather(*tasks, return_exceptions=True)
