"""Write and read flows for deals and leads.

Every update passes the same gate, in order:

1. ``tenant_id`` in the payload must match the request tenant.
2. Field permissions for the caller's role (all offending fields reported).
3. Computed (formula/relation) fields are read-only.
4. Payload validation and entity business rules (stage/pipeline consistency,
   contact existence).

A successful write returns the stored record plus the event specs to emit;
the caller schedules those without waiting on them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from field_permissions import (
    PermissionContext,
    can_edit_field,
    role_at_least,
    validate_update_permissions,
)

from app.custom_fields import kinds_of, load_definitions, permission_configs
from app.errors import (
    ComputedFieldWriteError,
    CrmError,
    FieldPermissionError,
    ForbiddenError,
    RecordNotFoundError,
    RecordValidationError,
    TenantMismatchError,
)
from app.events import event_spec, stage_change_spec, status_change_spec
from app.formula_fields import FormulaResolver
from app.records_validation import validate_record_payload
from app.relation_fields import RelationResolver
from app.stores import RowNotFoundError, StoreError

logger = logging.getLogger("imobi.mutations")

# Moved through the stage-transition rules below rather than generic assignment.
TRANSITION_FIELDS = ("pipeline_id", "stage_id")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass(frozen=True)
class EntitySpec:
    name: str
    table: str
    # entity type used for custom field definitions, permissions and events
    field_entity: str
    label: str
    filters: Dict[str, Any] = field(default_factory=dict)


DEAL = EntitySpec("deal", "deals", "deal", "Deal")
LEAD = EntitySpec("lead", "contacts", "contact", "Lead", {"type": "lead"})


@dataclass
class MutationResult:
    record: dict
    events: List[dict] = field(default_factory=list)


class RecordService:
    def __init__(self, store, formulas: FormulaResolver | None = None, relations: RelationResolver | None = None) -> None:
        self._store = store
        self._formulas = formulas or FormulaResolver(store)
        self._relations = relations or RelationResolver(store)

    # -- shared gate -----------------------------------------------------

    def _require_object(self, body: Any) -> dict:
        if not isinstance(body, dict):
            raise RecordValidationError([_issue("INVALID_PAYLOAD", "Invalid JSON body")])
        return dict(body)

    def _strip_tenant(self, body: dict, tenant_id: str) -> dict:
        if "tenant_id" not in body:
            return body
        value = body.pop("tenant_id")
        if value and value != tenant_id:
            logger.warning("tenant_mismatch tenant_id=%s payload_tenant_id=%s", tenant_id, value)
            raise TenantMismatchError("Cannot change tenant_id")
        return body

    def _require_writer(self, role: str, entity: EntitySpec) -> None:
        if not role_at_least(role, "member"):
            result = can_edit_field(role, entity.field_entity, "*")
            raise ForbiddenError(result.reason or "Permission denied")

    def _check_permissions(self, tenant_id: str, role: str, entity: EntitySpec, body: dict, definitions: List[dict], transitions: tuple = ()) -> None:
        ctx = PermissionContext(role, entity.field_entity, permission_configs(definitions))
        generic = {key: value for key, value in body.items() if key not in transitions}
        check = validate_update_permissions(ctx, generic)
        forbidden = list(check["forbidden_fields"])
        reasons = dict(check["reasons"])
        if not role_at_least(role, "member"):
            for key in transitions:
                if key in body:
                    forbidden.append(key)
                    reasons[key] = can_edit_field(role, entity.field_entity, key).reason or "Permission denied"
        if forbidden:
            logger.info(
                "mutation_forbidden tenant_id=%s entity=%s role=%s fields=%s",
                tenant_id,
                entity.name,
                role,
                forbidden,
            )
            raise FieldPermissionError(forbidden, reasons)

    def _check_computed(self, tenant_id: str, entity: EntitySpec, body: dict, definitions: List[dict]) -> None:
        kinds = kinds_of(definitions)
        if not kinds:
            return
        hits: List[str] = []
        for key, value in body.items():
            if key in kinds:
                hits.append(key)
            elif key == "custom_fields" and isinstance(value, dict):
                hits.extend(f"custom_fields.{name}" for name in value if name in kinds)
        if hits:
            logger.info("computed_write_rejected tenant_id=%s entity=%s fields=%s", tenant_id, entity.name, hits)
            raise ComputedFieldWriteError(hits)

    def _validate(self, entity: EntitySpec, body: dict, for_create: bool) -> dict:
        errors, cleaned = validate_record_payload(entity.name, body, for_create)
        if errors:
            raise RecordValidationError(errors)
        return cleaned

    def _fetch(self, entity: EntitySpec, tenant_id: str, record_id: str) -> dict:
        rows = self._store.select(entity.table, tenant_id, {"id": record_id, **entity.filters}, limit=1)
        if not rows:
            raise RecordNotFoundError(f"{entity.label} not found", "id")
        return rows[0]

    def _exists(self, table: str, tenant_id: str, row_id: str) -> dict | None:
        return self._store.get(table, tenant_id, row_id)

    def _first_stage(self, tenant_id: str, pipeline_id: str) -> dict | None:
        rows = self._store.select(
            "pipeline_stages",
            tenant_id,
            {"pipeline_id": pipeline_id},
            order_by="position",
            limit=1,
        )
        return rows[0] if rows else None

    def _apply_stage_flags(self, stage: dict, changes: dict) -> None:
        if stage.get("is_won") and changes.get("status") != "won":
            changes["status"] = "won"
            changes["closed_at"] = _now()
        elif stage.get("is_lost") and changes.get("status") != "lost":
            changes["status"] = "lost"
            changes["closed_at"] = _now()

    def _check_contact(self, tenant_id: str, contact_id: Any, issues: List[dict]) -> None:
        if contact_id is not None and self._exists("contacts", tenant_id, contact_id) is None:
            issues.append(_issue("INVALID_CONTACT", "Invalid contact_id: contact not found", "contact_id"))

    def _update(self, entity: EntitySpec, tenant_id: str, record_id: str, changes: dict) -> dict:
        try:
            return self._store.update(entity.table, tenant_id, record_id, changes)
        except RowNotFoundError as exc:
            raise RecordNotFoundError(f"{entity.label} not found", "id") from exc

    # -- reads -----------------------------------------------------------

    def _with_computed(self, entity: EntitySpec, tenant_id: str, record: dict) -> dict:
        computed: Dict[str, Any] = {}
        computed.update(self._formulas.resolve_formula_fields(tenant_id, entity.field_entity, record))
        computed.update(self._relations.resolve_relation_fields(tenant_id, entity.field_entity, record))
        out = dict(record)
        out["computed_fields"] = computed
        return out

    def get_deal(self, tenant_id: str, deal_id: str) -> dict:
        return self._with_computed(DEAL, tenant_id, self._fetch(DEAL, tenant_id, deal_id))

    def get_lead(self, tenant_id: str, lead_id: str) -> dict:
        return self._with_computed(LEAD, tenant_id, self._fetch(LEAD, tenant_id, lead_id))

    def fetch_deal(self, tenant_id: str, deal_id: str) -> dict:
        """Stored deal row without computed fields."""
        return self._fetch(DEAL, tenant_id, deal_id)

    def fetch_lead(self, tenant_id: str, lead_id: str) -> dict:
        return self._fetch(LEAD, tenant_id, lead_id)

    # -- deals -----------------------------------------------------------

    def update_deal(self, tenant_id: str, role: str, deal_id: str, body: Any) -> MutationResult:
        body = self._strip_tenant(self._require_object(body), tenant_id)
        definitions = load_definitions(self._store, tenant_id, DEAL.field_entity)
        self._check_permissions(tenant_id, role, DEAL, body, definitions, TRANSITION_FIELDS)
        self._check_computed(tenant_id, DEAL, body, definitions)
        changes = self._validate(DEAL, body, for_create=False)
        current = self._fetch(DEAL, tenant_id, deal_id)

        issues: List[dict] = []
        new_stage = None
        for key in TRANSITION_FIELDS:
            if key in changes and not changes[key]:
                issues.append(_issue("EMPTY_VALUE", f"Validation failed: {key} cannot be empty", key))
        stage_id = changes.get("stage_id")
        if stage_id and stage_id != current.get("stage_id"):
            new_stage = self._exists("pipeline_stages", tenant_id, stage_id)
            if new_stage is None:
                issues.append(_issue("INVALID_STAGE", "Invalid stage_id: stage not found", "stage_id"))
            elif new_stage.get("pipeline_id") != (changes.get("pipeline_id") or current.get("pipeline_id")):
                issues.append(
                    _issue(
                        "STAGE_PIPELINE_MISMATCH",
                        "Invalid stage_id: stage does not belong to the deal pipeline",
                        "stage_id",
                    )
                )
            else:
                self._apply_stage_flags(new_stage, changes)

        pipeline_id = changes.get("pipeline_id")
        if pipeline_id and pipeline_id != current.get("pipeline_id"):
            if self._exists("pipelines", tenant_id, pipeline_id) is None:
                issues.append(_issue("INVALID_PIPELINE", "Invalid pipeline_id: pipeline not found", "pipeline_id"))
            elif not stage_id or stage_id == current.get("stage_id"):
                first = self._first_stage(tenant_id, pipeline_id)
                if first is None:
                    issues.append(_issue("NO_PIPELINE_STAGES", "No stages found for new pipeline", "pipeline_id"))
                else:
                    changes["stage_id"] = first["id"]
                    new_stage = first

        if "contact_id" in changes:
            self._check_contact(tenant_id, changes["contact_id"], issues)
        if issues:
            raise RecordValidationError(issues)

        updated = self._update(DEAL, tenant_id, deal_id, changes)
        logger.info("deal_updated tenant_id=%s deal_id=%s fields=%s", tenant_id, deal_id, sorted(changes))

        events: List[dict] = []
        if changes.get("stage_id") and changes["stage_id"] != current.get("stage_id"):
            old_stage = self._exists("pipeline_stages", tenant_id, current["stage_id"]) if current.get("stage_id") else None
            events.append(
                stage_change_spec(
                    tenant_id,
                    deal_id,
                    current.get("stage_id"),
                    changes["stage_id"],
                    (old_stage or {}).get("name"),
                    (new_stage or {}).get("name"),
                )
            )
        if changes.get("status") and changes["status"] != current.get("status"):
            events.append(status_change_spec(tenant_id, deal_id, current.get("status"), changes["status"]))
        if not events:
            events.append(event_spec(tenant_id, "deal", deal_id, "updated", {"updated_fields": list(changes)}))
        return MutationResult(updated, events)

    def create_deal(self, tenant_id: str, role: str, body: Any) -> MutationResult:
        body = self._strip_tenant(self._require_object(body), tenant_id)
        self._require_writer(role, DEAL)
        definitions = load_definitions(self._store, tenant_id, DEAL.field_entity)
        self._check_computed(tenant_id, DEAL, body, definitions)
        data = self._validate(DEAL, body, for_create=True)

        issues: List[dict] = []
        pipeline_id = data.get("pipeline_id")
        if not pipeline_id:
            try:
                pipeline_id = self._store.select_single(
                    "pipelines", tenant_id, {"is_default": True, "is_active": True}
                )["id"]
            except StoreError as exc:
                raise RecordValidationError(
                    [_issue("NO_DEFAULT_PIPELINE", "No default pipeline found. Please specify pipeline_id", "pipeline_id")]
                ) from exc
        elif self._exists("pipelines", tenant_id, pipeline_id) is None:
            raise RecordValidationError(
                [_issue("INVALID_PIPELINE", "Invalid pipeline_id: pipeline not found", "pipeline_id")]
            )

        stage = None
        if data.get("stage_id"):
            stage = self._exists("pipeline_stages", tenant_id, data["stage_id"])
            if stage is None:
                issues.append(_issue("INVALID_STAGE", "Invalid stage_id: stage not found", "stage_id"))
            elif stage.get("pipeline_id") != pipeline_id:
                issues.append(
                    _issue(
                        "STAGE_PIPELINE_MISMATCH",
                        "Invalid stage_id: stage does not belong to specified pipeline",
                        "stage_id",
                    )
                )
        else:
            stage = self._first_stage(tenant_id, pipeline_id)
            if stage is None:
                issues.append(
                    _issue("NO_PIPELINE_STAGES", "No stages found for pipeline. Please specify stage_id", "stage_id")
                )
        self._check_contact(tenant_id, data.get("contact_id"), issues)
        if issues:
            raise RecordValidationError(issues)

        row = {
            "pipeline_id": pipeline_id,
            "stage_id": stage["id"],
            "title": data["title"],
            "contact_id": data.get("contact_id"),
            "value": data.get("value"),
            "status": data.get("status") or "open",
            "assigned_to": data.get("assigned_to"),
            "expected_close_date": data.get("expected_close_date"),
            "closed_at": None,
            "custom_fields": data.get("custom_fields"),
        }
        self._apply_stage_flags(stage, row)
        created = self._store.insert(DEAL.table, tenant_id, row)
        logger.info("deal_created tenant_id=%s deal_id=%s", tenant_id, created["id"])
        payload = {key: created.get(key) for key in ("title", "value", "status", "pipeline_id", "stage_id", "contact_id")}
        return MutationResult(created, [event_spec(tenant_id, "deal", created["id"], "created", payload)])

    # -- leads -----------------------------------------------------------

    def _drop_lead_type(self, body: dict) -> dict:
        if "type" not in body:
            return body
        if body["type"] and body["type"] != "lead":
            raise CrmError("LEAD_TYPE_LOCKED", "Cannot change lead type", "type", None, 403)
        body.pop("type")
        return body

    def update_lead(self, tenant_id: str, role: str, lead_id: str, body: Any) -> MutationResult:
        body = self._strip_tenant(self._require_object(body), tenant_id)
        body = self._drop_lead_type(body)
        definitions = load_definitions(self._store, tenant_id, LEAD.field_entity)
        self._check_permissions(tenant_id, role, LEAD, body, definitions)
        self._check_computed(tenant_id, LEAD, body, definitions)
        changes = self._validate(LEAD, body, for_create=False)
        self._fetch(LEAD, tenant_id, lead_id)
        updated = self._update(LEAD, tenant_id, lead_id, changes)
        logger.info("lead_updated tenant_id=%s lead_id=%s fields=%s", tenant_id, lead_id, sorted(changes))
        event = event_spec(tenant_id, LEAD.field_entity, lead_id, "updated", {"updated_fields": list(changes)})
        return MutationResult(updated, [event])

    def create_lead(self, tenant_id: str, role: str, body: Any) -> MutationResult:
        body = self._strip_tenant(self._require_object(body), tenant_id)
        body = self._drop_lead_type(body)
        self._require_writer(role, LEAD)
        definitions = load_definitions(self._store, tenant_id, LEAD.field_entity)
        self._check_computed(tenant_id, LEAD, body, definitions)
        data = self._validate(LEAD, body, for_create=True)
        row = {
            "name": data["name"],
            "type": "lead",
            "email": data.get("email"),
            "phone": data.get("phone"),
            "source": data.get("source"),
            "status": data.get("status") or "active",
            "assigned_to": data.get("assigned_to"),
            "custom_fields": data.get("custom_fields"),
        }
        created = self._store.insert(LEAD.table, tenant_id, row)
        logger.info("lead_created tenant_id=%s lead_id=%s", tenant_id, created["id"])
        payload = {key: created.get(key) for key in ("name", "email", "phone", "type", "source")}
        return MutationResult(created, [event_spec(tenant_id, LEAD.field_entity, created["id"], "created", payload)])
