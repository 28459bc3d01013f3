"""In-memory append-only event log, tenant scoped."""

from __future__ import annotations

import copy
import threading
from typing import List

from event_bus import Event, validate_event


class Outbox:
    def __init__(self) -> None:
        self._events: List[Event] = []
        self._lock = threading.Lock()

    def append(self, event: dict) -> dict:
        validate_event(event)
        stored = copy.deepcopy(event)
        with self._lock:
            self._events.append(stored)
        return copy.deepcopy(stored)

    def list(self, tenant_id: str) -> list[dict]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._events if e["tenant_id"] == tenant_id]

    def query(self, tenant_id: str, entity_type: str, entity_id: str, limit: int | None = None) -> list[dict]:
        """Events for one record, newest first."""
        with self._lock:
            matches = [
                copy.deepcopy(e)
                for e in reversed(self._events)
                if e["tenant_id"] == tenant_id and e["entity_type"] == entity_type and e["entity_id"] == entity_id
            ]
        return matches if limit is None else matches[:limit]

    def pending(self, tenant_id: str | None = None) -> list[dict]:
        """Unprocessed events, oldest first."""
        with self._lock:
            return [
                copy.deepcopy(e)
                for e in self._events
                if not e["processed"] and (tenant_id is None or e["tenant_id"] == tenant_id)
            ]

    def mark_processed(self, event_id: str) -> bool:
        with self._lock:
            for event in self._events:
                if event["id"] == event_id:
                    if event["processed"]:
                        return False
                    event["processed"] = True
                    return True
        return False

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
