import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.errors import (
    ComputedFieldWriteError,
    CrmError,
    FieldPermissionError,
    ForbiddenError,
    RecordNotFoundError,
    RecordValidationError,
    TenantMismatchError,
)
from app.mutation_guard import RecordService
from app.stores import MemoryRecordStore


TENANT = "t1"


def _event_types(result):
    return [spec["event_type"] for spec in result.events]


class GuardFixture(unittest.TestCase):
    def setUp(self) -> None:
        store = MemoryRecordStore()
        self.store = store
        self.service = RecordService(store)
        store.insert("pipelines", TENANT, {"id": "p1", "name": "Vendas", "is_default": True, "is_active": True})
        store.insert("pipelines", TENANT, {"id": "p2", "name": "Locação", "is_default": False, "is_active": True})
        store.insert("pipelines", TENANT, {"id": "p3", "name": "Vazio", "is_default": False, "is_active": True})
        for stage_id, pipeline_id, name, position, flags in (
            ("s1", "p1", "Proposta", 1, {}),
            ("s2", "p1", "Negociação", 2, {}),
            ("s_won", "p1", "Fechado - Ganho", 3, {"is_won": True}),
            ("s_lost", "p1", "Fechado - Perdido", 4, {"is_lost": True}),
            ("q2", "p2", "Visita", 2, {}),
            ("q1", "p2", "Contato", 1, {}),
        ):
            store.insert(
                "pipeline_stages",
                TENANT,
                {"id": stage_id, "pipeline_id": pipeline_id, "name": name, "position": position, **flags},
            )
        store.insert("contacts", TENANT, {"id": "c1", "name": "Ana", "type": "customer"})
        store.insert("contacts", TENANT, {"id": "l1", "name": "Bruno", "type": "lead", "status": "active"})
        store.insert(
            "deals",
            TENANT,
            {"id": "d1", "title": "Casa", "pipeline_id": "p1", "stage_id": "s1", "status": "open", "value": 100},
        )
        store.insert(
            "custom_fields",
            TENANT,
            {
                "entity_type": "deal",
                "field_name": "score",
                "options": {
                    "kind": "formula",
                    "expression": "IF(value>=100,'high','low')",
                    "dependencies": ["value"],
                    "return_type": "string",
                },
                "position": 1,
            },
        )
        store.insert(
            "custom_fields",
            TENANT,
            {
                "entity_type": "deal",
                "field_name": "commission",
                "options": {"required_role": "manager"},
                "position": 2,
            },
        )


class TestUpdateDealPermissions(GuardFixture):
    def test_member_cannot_set_status_directly(self) -> None:
        with self.assertRaises(FieldPermissionError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", {"status": "won"})
        self.assertEqual(ctx.exception.status, 403)
        self.assertEqual(ctx.exception.extra["forbidden_fields"], ["status"])

    def test_member_reaches_won_through_stage(self) -> None:
        result = self.service.update_deal(TENANT, "member", "d1", {"stage_id": "s_won"})
        self.assertEqual(result.record["status"], "won")
        self.assertTrue(result.record["closed_at"].endswith("Z"))
        self.assertEqual(_event_types(result), ["stage_changed", "status_changed"])
        stage_event = result.events[0]
        self.assertEqual(stage_event["payload"]["from_stage_name"], "Proposta")
        self.assertEqual(stage_event["payload"]["to_stage_name"], "Fechado - Ganho")

    def test_lost_stage(self) -> None:
        result = self.service.update_deal(TENANT, "manager", "d1", {"stage_id": "s_lost"})
        self.assertEqual(result.record["status"], "lost")
        self.assertIsNotNone(result.record["closed_at"])

    def test_every_forbidden_field_reported(self) -> None:
        body = {"status": "won", "closed_at": "2026-01-01T00:00:00Z", "id": "x", "created_at": "y", "title": "ok"}
        with self.assertRaises(FieldPermissionError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", body)
        self.assertEqual(
            sorted(ctx.exception.extra["forbidden_fields"]),
            ["closed_at", "created_at", "id", "status"],
        )
        self.assertEqual(len(ctx.exception.to_issues()), 4)

    def test_viewer_denied_everything(self) -> None:
        with self.assertRaises(FieldPermissionError) as ctx:
            self.service.update_deal(TENANT, "viewer", "d1", {"title": "x", "stage_id": "s2"})
        self.assertEqual(sorted(ctx.exception.extra["forbidden_fields"]), ["stage_id", "title"])
        messages = {issue["message"] for issue in ctx.exception.to_issues()}
        self.assertEqual(messages, {"Viewer role has read-only access"})

    def test_admin_may_set_status(self) -> None:
        result = self.service.update_deal(TENANT, "admin", "d1", {"status": "lost"})
        self.assertEqual(result.record["status"], "lost")
        self.assertEqual(_event_types(result), ["status_changed"])

    def test_custom_field_required_role(self) -> None:
        with self.assertRaises(FieldPermissionError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", {"custom_fields": {"commission": 5, "notes": "a"}})
        self.assertEqual(ctx.exception.extra["forbidden_fields"], ["custom_fields.commission"])
        result = self.service.update_deal(TENANT, "manager", "d1", {"custom_fields": {"commission": 5}})
        self.assertEqual(result.record["custom_fields"], {"commission": 5})


class TestUpdateDealGuards(GuardFixture):
    def test_tenant_mismatch(self) -> None:
        with self.assertRaises(TenantMismatchError) as ctx:
            self.service.update_deal(TENANT, "admin", "d1", {"tenant_id": "t2"})
        self.assertEqual(ctx.exception.status, 403)

    def test_same_tenant_is_ignored(self) -> None:
        result = self.service.update_deal(TENANT, "member", "d1", {"tenant_id": TENANT, "title": "Apto"})
        self.assertEqual(result.record["title"], "Apto")
        self.assertEqual(result.record["tenant_id"], TENANT)

    def test_computed_field_rejected(self) -> None:
        with self.assertRaises(ComputedFieldWriteError) as ctx:
            self.service.update_deal(TENANT, "manager", "d1", {"score": "high"})
        self.assertEqual(ctx.exception.extra["computed_fields"], ["score"])
        with self.assertRaises(ComputedFieldWriteError) as nested:
            self.service.update_deal(TENANT, "member", "d1", {"custom_fields": {"score": "low"}})
        self.assertEqual(nested.exception.extra["computed_fields"], ["custom_fields.score"])

    def test_empty_title(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", {"title": "   "})
        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(ctx.exception.issues[0]["path"], "title")

    def test_title_trimmed(self) -> None:
        result = self.service.update_deal(TENANT, "member", "d1", {"title": "  Sobrado "})
        self.assertEqual(result.record["title"], "Sobrado")
        self.assertEqual(_event_types(result), ["updated"])
        self.assertEqual(result.events[0]["payload"], {"updated_fields": ["title"]})

    def test_missing_deal(self) -> None:
        with self.assertRaises(RecordNotFoundError):
            self.service.update_deal(TENANT, "member", "nope", {"title": "x"})
        with self.assertRaises(RecordNotFoundError):
            self.service.update_deal("t2", "member", "d1", {"title": "x"})

    def test_stage_from_other_pipeline(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", {"stage_id": "q1"})
        self.assertEqual(ctx.exception.code, "STAGE_PIPELINE_MISMATCH")

    def test_unknown_stage(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", {"stage_id": "ghost"})
        self.assertEqual(ctx.exception.code, "INVALID_STAGE")

    def test_pipeline_move_assigns_first_stage(self) -> None:
        result = self.service.update_deal(TENANT, "member", "d1", {"pipeline_id": "p2"})
        self.assertEqual(result.record["pipeline_id"], "p2")
        self.assertEqual(result.record["stage_id"], "q1")
        self.assertEqual(_event_types(result), ["stage_changed"])

    def test_pipeline_move_with_matching_stage(self) -> None:
        result = self.service.update_deal(TENANT, "member", "d1", {"pipeline_id": "p2", "stage_id": "q2"})
        self.assertEqual(result.record["stage_id"], "q2")

    def test_pipeline_without_stages(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", {"pipeline_id": "p3"})
        self.assertEqual(ctx.exception.code, "NO_PIPELINE_STAGES")

    def test_unknown_pipeline(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", {"pipeline_id": "zz"})
        self.assertEqual(ctx.exception.code, "INVALID_PIPELINE")

    def test_contact_must_exist(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.update_deal(TENANT, "member", "d1", {"contact_id": "ghost"})
        self.assertEqual(ctx.exception.code, "INVALID_CONTACT")
        result = self.service.update_deal(TENANT, "member", "d1", {"contact_id": "c1"})
        self.assertEqual(result.record["contact_id"], "c1")
        cleared = self.service.update_deal(TENANT, "member", "d1", {"contact_id": None})
        self.assertIsNone(cleared.record["contact_id"])

    def test_non_object_body(self) -> None:
        with self.assertRaises(RecordValidationError):
            self.service.update_deal(TENANT, "member", "d1", ["title"])


class TestCreateDeal(GuardFixture):
    def test_defaults_to_default_pipeline_first_stage(self) -> None:
        result = self.service.create_deal(TENANT, "member", {"title": " Terreno ", "value": 10})
        record = result.record
        self.assertEqual((record["pipeline_id"], record["stage_id"]), ("p1", "s1"))
        self.assertEqual(record["title"], "Terreno")
        self.assertEqual(record["status"], "open")
        self.assertEqual(_event_types(result), ["created"])
        self.assertEqual(result.events[0]["payload"]["title"], "Terreno")

    def test_title_required(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.create_deal(TENANT, "member", {"value": 10})
        self.assertEqual(ctx.exception.code, "REQUIRED_FIELD")

    def test_stage_must_match_pipeline(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.create_deal(TENANT, "member", {"title": "x", "pipeline_id": "p1", "stage_id": "q1"})
        self.assertEqual(ctx.exception.code, "STAGE_PIPELINE_MISMATCH")

    def test_pipeline_without_stages(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.create_deal(TENANT, "member", {"title": "x", "pipeline_id": "p3"})
        self.assertEqual(ctx.exception.code, "NO_PIPELINE_STAGES")

    def test_no_default_pipeline(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            self.service.create_deal("t2", "member", {"title": "x"})
        self.assertEqual(ctx.exception.code, "NO_DEFAULT_PIPELINE")

    def test_viewer_cannot_create(self) -> None:
        with self.assertRaises(ForbiddenError) as ctx:
            self.service.create_deal(TENANT, "viewer", {"title": "x"})
        self.assertEqual(ctx.exception.status, 403)

    def test_created_in_won_stage(self) -> None:
        result = self.service.create_deal(TENANT, "member", {"title": "x", "stage_id": "s_won", "pipeline_id": "p1"})
        self.assertEqual(result.record["status"], "won")
        self.assertIsNotNone(result.record["closed_at"])


class TestLeads(GuardFixture):
    def test_create_lead(self) -> None:
        result = self.service.create_lead(TENANT, "member", {"name": " Carla ", "email": "c@x.com"})
        self.assertEqual(result.record["name"], "Carla")
        self.assertEqual(result.record["type"], "lead")
        self.assertEqual(result.record["status"], "active")
        self.assertEqual(result.events[0]["entity_type"], "contact")

    def test_create_lead_requires_name(self) -> None:
        with self.assertRaises(RecordValidationError):
            self.service.create_lead(TENANT, "member", {"name": ""})

    def test_update_lead(self) -> None:
        result = self.service.update_lead(TENANT, "member", "l1", {"phone": "+55 11 9999", "type": "lead"})
        self.assertEqual(result.record["phone"], "+55 11 9999")
        self.assertEqual(result.events[0]["payload"], {"updated_fields": ["phone"]})

    def test_lead_type_locked(self) -> None:
        with self.assertRaises(CrmError) as ctx:
            self.service.update_lead(TENANT, "admin", "l1", {"type": "customer"})
        self.assertEqual((ctx.exception.code, ctx.exception.status), ("LEAD_TYPE_LOCKED", 403))

    def test_lead_name_cannot_be_emptied(self) -> None:
        with self.assertRaises(RecordValidationError):
            self.service.update_lead(TENANT, "member", "l1", {"name": " "})

    def test_only_leads_are_updated(self) -> None:
        with self.assertRaises(RecordNotFoundError):
            self.service.update_lead(TENANT, "member", "c1", {"phone": "1"})

    def test_member_cannot_change_lead_status(self) -> None:
        with self.assertRaises(FieldPermissionError):
            self.service.update_lead(TENANT, "member", "l1", {"status": "archived"})


class TestReads(GuardFixture):
    def test_deal_with_computed_fields(self) -> None:
        record = self.service.get_deal(TENANT, "d1")
        self.assertEqual(record["computed_fields"], {"score": "high"})
        self.assertEqual(record["title"], "Casa")

    def test_lead_read_scoped_to_leads(self) -> None:
        self.assertEqual(self.service.get_lead(TENANT, "l1")["name"], "Bruno")
        with self.assertRaises(RecordNotFoundError):
            self.service.get_lead(TENANT, "c1")


if __name__ == "__main__":
    unittest.main()
