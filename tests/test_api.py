import os
import sys
import unittest
import uuid

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fastapi.testclient import TestClient

os.environ["USE_DB"] = "0"

import app.main as main


def _headers(tenant_id: str, role: str | None = "member") -> dict:
    headers = {"X-Tenant-Id": tenant_id}
    if role:
        headers["X-User-Role"] = role
    return headers


class ApiFixture(unittest.TestCase):
    def setUp(self) -> None:
        self.tenant_id = f"t_{uuid.uuid4().hex[:8]}"
        main.tenant_store.create_tenant("Imob", {"template_id": "imobi360"}, self.tenant_id)
        store = main.record_store
        store.insert("pipelines", self.tenant_id, {"id": f"{self.tenant_id}_p1", "name": "Vendas", "is_default": True, "is_active": True})
        for suffix, position, flags in (("s1", 1, {}), ("won", 2, {"is_won": True})):
            store.insert(
                "pipeline_stages",
                self.tenant_id,
                {
                    "id": f"{self.tenant_id}_{suffix}",
                    "pipeline_id": f"{self.tenant_id}_p1",
                    "name": suffix,
                    "position": position,
                    **flags,
                },
            )
        store.insert(
            "deals",
            self.tenant_id,
            {
                "id": f"{self.tenant_id}_d1",
                "title": "Casa",
                "pipeline_id": f"{self.tenant_id}_p1",
                "stage_id": f"{self.tenant_id}_s1",
                "status": "open",
                "value": 250,
            },
        )
        store.insert(
            "custom_fields",
            self.tenant_id,
            {
                "entity_type": "deal",
                "field_name": "score",
                "options": {
                    "kind": "formula",
                    "expression": "value * 2",
                    "dependencies": ["value"],
                    "return_type": "number",
                },
                "position": 1,
            },
        )
        self.deal_id = f"{self.tenant_id}_d1"
        self.won_stage = f"{self.tenant_id}_won"


class TestHealthAndAuth(ApiFixture):
    def test_health_needs_no_tenant(self) -> None:
        client = TestClient(main.app)
        res = client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"ok": True})

    def test_missing_tenant_header(self) -> None:
        client = TestClient(main.app)
        res = client.get("/api/tenant/config")
        self.assertEqual(res.status_code, 401)
        body = res.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["errors"][0]["code"], "UNAUTHORIZED")

    def test_role_defaults_to_viewer(self) -> None:
        client = TestClient(main.app)
        res = client.patch(f"/api/deals/{self.deal_id}", json={"title": "x"}, headers=_headers(self.tenant_id, None))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["forbidden_fields"], ["title"])


class TestTenantConfigApi(ApiFixture):
    def test_config_and_navigation(self) -> None:
        client = TestClient(main.app)
        res = client.get("/api/tenant/config", headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 200)
        config = res.json()["config"]
        self.assertEqual(config["template_id"], "imobi360")
        self.assertIn("leads", [m["id"] for m in config["modules"]])

        nav = client.get("/api/tenant/navigation", headers=_headers(self.tenant_id)).json()["navigation"]
        member_ids = [item.get("module_id") for item in nav["sidebar_items"]]
        self.assertNotIn("reports", member_ids)
        nav = client.get("/api/tenant/navigation", headers=_headers(self.tenant_id, "manager")).json()["navigation"]
        self.assertIn("reports", [item.get("module_id") for item in nav["sidebar_items"]])

    def test_unknown_tenant(self) -> None:
        client = TestClient(main.app)
        res = client.get("/api/tenant/config", headers=_headers("nobody"))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "TENANT_NOT_FOUND")

    def test_broken_config_hides_detail(self) -> None:
        main.tenant_store.create_tenant("Empty", {}, f"{self.tenant_id}_empty")
        client = TestClient(main.app)
        res = client.get("/api/tenant/config", headers=_headers(f"{self.tenant_id}_empty"))
        self.assertEqual(res.status_code, 500)
        error = res.json()["errors"][0]
        self.assertEqual(error["code"], "CONFIGURATION_ERROR")
        self.assertEqual(error["message"], "Tenant configuration is unavailable. Please contact support.")

    def test_module_access(self) -> None:
        client = TestClient(main.app)
        ok = client.get("/api/modules/deals", headers=_headers(self.tenant_id))
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()["module"]["id"], "deals")
        denied = client.get("/api/modules/reports", headers=_headers(self.tenant_id))
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()["errors"][0]["code"], "UNAUTHORIZED")
        missing = client.get("/api/modules/billing", headers=_headers(self.tenant_id))
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["errors"][0]["code"], "MODULE_NOT_CONFIGURED")

    def test_disabled_module(self) -> None:
        client = TestClient(main.app)
        res = client.patch(
            "/api/tenant/overrides",
            json={"modules": [{"id": "properties", "enabled": False}]},
            headers=_headers(self.tenant_id, "admin"),
        )
        self.assertEqual(res.status_code, 200)
        res = client.get("/api/modules/properties", headers=_headers(self.tenant_id, "admin"))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["errors"][0]["code"], "MODULE_DISABLED")

    def test_templates_listed(self) -> None:
        client = TestClient(main.app)
        res = client.get("/api/templates", headers=_headers(self.tenant_id))
        ids = [t["id"] for t in res.json()["templates"]]
        self.assertIn("imobi360", ids)
        self.assertIn("blank", ids)

    def test_template_switch_is_admin_only(self) -> None:
        client = TestClient(main.app)
        res = client.put("/api/tenant/template", json={"template_id": "blank"}, headers=_headers(self.tenant_id, "manager"))
        self.assertEqual(res.status_code, 403)
        res = client.put("/api/tenant/template", json={"template_id": "blank"}, headers=_headers(self.tenant_id, "admin"))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["config"]["template_id"], "blank")
        res = client.put("/api/tenant/template", json={"template_id": "ghost"}, headers=_headers(self.tenant_id, "admin"))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "TEMPLATE_NOT_FOUND")

    def test_invalid_overrides(self) -> None:
        client = TestClient(main.app)
        res = client.patch("/api/tenant/overrides", json={"modules": "all"}, headers=_headers(self.tenant_id, "admin"))
        self.assertEqual(res.status_code, 400)
        self.assertFalse(res.json()["ok"])

    def test_list_identity_override_is_client_error(self) -> None:
        client = TestClient(main.app)
        res = client.patch(
            "/api/tenant/overrides",
            json={"modules": [{"id": ["deals"], "enabled": False}]},
            headers=_headers(self.tenant_id, "admin"),
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "OVERRIDES_INVALID_IDENTITY")


class TestDealApi(ApiFixture):
    def test_member_cannot_set_status(self) -> None:
        client = TestClient(main.app)
        res = client.patch(f"/api/deals/{self.deal_id}", json={"status": "won"}, headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 403)
        body = res.json()
        self.assertEqual(body["forbidden_fields"], ["status"])
        self.assertEqual(body["errors"][0]["path"], "status")
        self.assertEqual(main.record_store.get("deals", self.tenant_id, self.deal_id)["status"], "open")

    def test_member_wins_through_stage(self) -> None:
        with TestClient(main.app) as client:
            res = client.patch(f"/api/deals/{self.deal_id}", json={"stage_id": self.won_stage}, headers=_headers(self.tenant_id))
            self.assertEqual(res.status_code, 200)
            record = res.json()["record"]
            self.assertEqual(record["status"], "won")
            self.assertIsNotNone(record["closed_at"])
        events = main.outbox.list(self.tenant_id)
        self.assertEqual(sorted(e["event_type"] for e in events), ["stage_changed", "status_changed"])
        self.assertTrue(all(e["processed"] is False for e in events))

    def test_computed_field_write(self) -> None:
        client = TestClient(main.app)
        res = client.patch(f"/api/deals/{self.deal_id}", json={"score": 1}, headers=_headers(self.tenant_id, "manager"))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["computed_fields"], ["score"])

    def test_validation_error(self) -> None:
        client = TestClient(main.app)
        res = client.patch(f"/api/deals/{self.deal_id}", json={"title": ""}, headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "EMPTY_VALUE")

    def test_invalid_json(self) -> None:
        client = TestClient(main.app)
        headers = {**_headers(self.tenant_id), "Content-Type": "application/json"}
        res = client.patch(f"/api/deals/{self.deal_id}", content="{bad", headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "INVALID_PAYLOAD")

    def test_not_found(self) -> None:
        client = TestClient(main.app)
        res = client.get("/api/deals/missing", headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 404)
        res = client.get(f"/api/deals/{self.deal_id}", headers=_headers("other"))
        self.assertEqual(res.status_code, 404)

    def test_read_includes_computed_fields(self) -> None:
        client = TestClient(main.app)
        res = client.get(f"/api/deals/{self.deal_id}", headers=_headers(self.tenant_id, "viewer"))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["record"]["computed_fields"], {"score": 500})

    def test_tenant_mismatch(self) -> None:
        client = TestClient(main.app)
        res = client.patch(f"/api/deals/{self.deal_id}", json={"tenant_id": "evil"}, headers=_headers(self.tenant_id, "admin"))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["errors"][0]["code"], "TENANT_MISMATCH")

    def test_create_deal(self) -> None:
        with TestClient(main.app) as client:
            res = client.post("/api/deals", json={"title": "Apartamento"}, headers=_headers(self.tenant_id))
            self.assertEqual(res.status_code, 201)
            record = res.json()["record"]
        self.assertEqual(record["stage_id"], f"{self.tenant_id}_s1")
        created = [e for e in main.outbox.list(self.tenant_id) if e["event_type"] == "created"]
        self.assertEqual([e["entity_id"] for e in created], [record["id"]])


class TestAuditApi(ApiFixture):
    def test_deal_audit_lists_record_events(self) -> None:
        with TestClient(main.app) as client:
            res = client.patch(f"/api/deals/{self.deal_id}", json={"title": "Casa nova"}, headers=_headers(self.tenant_id))
            self.assertEqual(res.status_code, 200)
        client = TestClient(main.app)
        res = client.get(f"/api/deals/{self.deal_id}/audit", headers=_headers(self.tenant_id, "viewer"))
        self.assertEqual(res.status_code, 200)
        entries = res.json()["entries"]
        self.assertEqual([e["action"] for e in entries], ["Updated fields: title"])
        self.assertEqual(entries[0]["actor"], "System")
        res = client.get(f"/api/deals/{self.deal_id}/audit", headers=_headers("other"))
        self.assertEqual(res.status_code, 404)
        res = client.get("/api/deals/missing/audit", headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 404)

    def test_lead_audit_uses_contact_events(self) -> None:
        with TestClient(main.app) as client:
            lead_id = client.post("/api/leads", json={"name": "Dora"}, headers=_headers(self.tenant_id)).json()["record"]["id"]
        client = TestClient(main.app)
        res = client.get(f"/api/leads/{lead_id}/audit?limit=5", headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual([e["event_type"] for e in res.json()["entries"]], ["created"])


class TestActionApi(ApiFixture):
    def setUp(self) -> None:
        super().setUp()
        main.record_store.insert(
            "custom_fields",
            self.tenant_id,
            {
                "entity_type": "deal",
                "field_name": "send_proposal",
                "field_type": "button",
                "options": {"action": "event", "automation_key": "proposal", "payload_template": {"title": "{record.title}"}},
                "position": 2,
            },
        )

    def test_click_emits_button_event(self) -> None:
        client = TestClient(main.app)
        headers = {**_headers(self.tenant_id), "X-User-Id": "user-123456789"}
        res = client.post(f"/api/deals/{self.deal_id}/actions", json={"field_name": "send_proposal"}, headers=headers)
        self.assertEqual(res.status_code, 200)
        body = res.json()
        events = [e for e in main.outbox.list(self.tenant_id) if e["id"] == body["event_id"]]
        self.assertEqual(len(events), 1)
        payload = events[0]["payload"]
        self.assertEqual(payload["action"], "button_click")
        self.assertEqual(payload["field_name"], "send_proposal")
        self.assertEqual(payload["payload"], {"title": "Casa"})
        self.assertEqual(payload["user_id"], "user-123456789")
        audit = client.get(f"/api/deals/{self.deal_id}/audit", headers=_headers(self.tenant_id)).json()["entries"]
        self.assertEqual(audit[0]["action"], "Clicked button: send_proposal")
        self.assertEqual(audit[0]["actor"], "User user-123")

    def test_click_errors(self) -> None:
        client = TestClient(main.app)
        url = f"/api/deals/{self.deal_id}/actions"
        res = client.post(url, json={"field_name": "send_proposal"}, headers=_headers(self.tenant_id, "viewer"))
        self.assertEqual(res.status_code, 403)
        res = client.post(url, json={"field_name": "title"}, headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "ACTION_FIELD_NOT_FOUND")
        res = client.post(url, json={}, headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "FIELD_NAME_REQUIRED")
        res = client.post("/api/deals/missing/actions", json={"field_name": "send_proposal"}, headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "RECORD_NOT_FOUND")


class TestLeadApi(ApiFixture):
    def test_create_and_update_lead(self) -> None:
        client = TestClient(main.app)
        res = client.post("/api/leads", json={"name": "Dora", "source": "site"}, headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 201)
        lead_id = res.json()["record"]["id"]
        res = client.patch(f"/api/leads/{lead_id}", json={"email": "dora@example.com"}, headers=_headers(self.tenant_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["record"]["email"], "dora@example.com")
        res = client.get(f"/api/leads/{lead_id}", headers=_headers(self.tenant_id, "viewer"))
        self.assertEqual(res.json()["record"]["type"], "lead")

    def test_lead_type_locked(self) -> None:
        client = TestClient(main.app)
        lead_id = client.post("/api/leads", json={"name": "Eva"}, headers=_headers(self.tenant_id)).json()["record"]["id"]
        res = client.patch(f"/api/leads/{lead_id}", json={"type": "customer"}, headers=_headers(self.tenant_id, "admin"))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["errors"][0]["code"], "LEAD_TYPE_LOCKED")


if __name__ == "__main__":
    unittest.main()
