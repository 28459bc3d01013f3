import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from event_bus import EventBus
from outbox import Outbox

from app.events import (
    StoreEventLog,
    drain_pending_events,
    emit_button_click,
    emit_event,
    emit_stage_change,
    emit_status_change,
    pending_count,
    spawn_event,
    status_change_spec,
)
from app.stores import MemoryRecordStore, StoreError


class FailingLog:
    def append(self, event: dict) -> dict:
        raise StoreError("events table unavailable")


class TestEmitEvent(unittest.TestCase):
    def setUp(self) -> None:
        self.outbox = Outbox()
        self.bus = EventBus(self.outbox)

    def test_emit_returns_event_id(self) -> None:
        result = emit_event(self.bus, "t1", "deal", "d1", "created", {"title": "A"})
        self.assertTrue(result["success"])
        pending = self.outbox.pending("t1")
        self.assertEqual(pending[0]["id"], result["event_id"])
        self.assertFalse(pending[0]["processed"])

    def test_stage_change_payload(self) -> None:
        emit_stage_change(self.bus, "t1", "d1", "s1", "s2", "New", "Won")
        event = self.outbox.pending()[0]
        self.assertEqual(event["event_type"], "stage_changed")
        self.assertEqual(
            event["payload"],
            {"from_stage_id": "s1", "to_stage_id": "s2", "from_stage_name": "New", "to_stage_name": "Won"},
        )

    def test_status_change_payload(self) -> None:
        emit_status_change(self.bus, "t1", "d1", "open", "won")
        event = self.outbox.pending()[0]
        self.assertEqual(event["event_type"], "status_changed")
        self.assertEqual(event["payload"], {"from_status": "open", "to_status": "won"})

    def test_button_click_is_update_event(self) -> None:
        emit_button_click(self.bus, "t1", "contact", "c1", "send_whatsapp", {"source": "drawer"})
        event = self.outbox.pending()[0]
        self.assertEqual(event["event_type"], "updated")
        self.assertEqual(
            event["payload"],
            {"action": "button_click", "field_name": "send_whatsapp", "source": "drawer"},
        )

    def test_invalid_event_is_reported_not_raised(self) -> None:
        with self.assertLogs("imobi.events", level="ERROR"):
            result = emit_event(self.bus, "t1", "invoice", "i1", "created")
        self.assertFalse(result["success"])
        self.assertIn("entity_type", result["error"])

    def test_store_failure_is_reported(self) -> None:
        bus = EventBus(FailingLog())
        with self.assertLogs("imobi.events", level="ERROR"):
            result = emit_event(bus, "t1", "deal", "d1", "updated", {})
        self.assertEqual(result, {"success": False, "error": "events table unavailable"})

    def test_store_event_log_writes_events_table(self) -> None:
        store = MemoryRecordStore()
        bus = EventBus(StoreEventLog(store))
        result = emit_event(bus, "t1", "deal", "d1", "updated", {"updated_fields": ["value"]})
        rows = store.select("events", "t1")
        self.assertEqual([row["id"] for row in rows], [result["event_id"]])
        self.assertEqual(store.select("events", "t2"), [])

    def test_store_event_log_query_is_newest_first(self) -> None:
        store = MemoryRecordStore()
        log = StoreEventLog(store)
        seeds = (
            ("2026-01-01T10:00:00Z", "d1"),
            ("2026-01-03T10:00:00Z", "d1"),
            ("2026-01-02T10:00:00Z", "d2"),
        )
        for stamp, entity_id in seeds:
            store.insert(
                "events",
                "t1",
                {"entity_type": "deal", "entity_id": entity_id, "event_type": "updated", "payload": {}, "created_at": stamp},
            )
        rows = log.query("t1", "deal", "d1")
        self.assertEqual([row["created_at"] for row in rows], ["2026-01-03T10:00:00Z", "2026-01-01T10:00:00Z"])
        self.assertEqual(len(log.query("t1", "deal", "d1", 1)), 1)
        self.assertEqual(log.query("t2", "deal", "d1"), [])


class TestSpawnEvent(unittest.IsolatedAsyncioTestCase):
    async def test_spawned_event_is_delivered(self) -> None:
        outbox = Outbox()
        bus = EventBus(outbox)
        task = spawn_event(bus, status_change_spec("t1", "d1", "open", "lost"))
        result = await task
        self.assertTrue(result["success"])
        self.assertEqual(len(outbox.pending()), 1)

    async def test_failed_delivery_does_not_raise(self) -> None:
        bus = EventBus(FailingLog())
        with self.assertLogs("imobi.events", level="ERROR"):
            result = await spawn_event(bus, status_change_spec("t1", "d1", "open", "won"))
        self.assertFalse(result["success"])

    async def test_drain_waits_for_pending(self) -> None:
        outbox = Outbox()
        bus = EventBus(outbox)
        for _ in range(3):
            spawn_event(bus, status_change_spec("t1", "d1", "open", "won"))
        await drain_pending_events()
        self.assertEqual(pending_count(), 0)
        self.assertEqual(len(outbox.pending()), 3)


if __name__ == "__main__":
    unittest.main()
