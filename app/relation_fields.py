"""Relation fields: lookups (many-to-one) and rollups (one-to-many)."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List

from imobi.record_path import get_path

from app.custom_fields import field_kind, get_definition, load_definitions
from app.errors import Resolution
from app.stores import StoreError

logger = logging.getLogger("imobi.relation")

RELATION_TYPES = ("one_to_many", "many_to_one")
ROLLUP_OPERATIONS = ("sum", "count", "avg", "min", "max")

TABLE_NAMES: Dict[str, str] = {
    "deal": "deals",
    "deals": "deals",
    "contact": "contacts",
    "contacts": "contacts",
    "lead": "contacts",
    "leads": "contacts",
    "activity": "activities",
    "activities": "activities",
}


@dataclass(frozen=True)
class RelationConfig:
    target_entity: str
    relation_type: str
    foreign_key: str
    lookup_field: str | None = None
    rollup: dict | None = None
    kind: str = "relation"

    @classmethod
    def from_options(cls, options: dict) -> "RelationConfig":
        return cls(
            target_entity=options.get("target_entity"),
            relation_type=options.get("relation_type"),
            foreign_key=options.get("foreign_key"),
            lookup_field=options.get("lookup_field") or None,
            rollup=options.get("rollup") or None,
        )


def _is_identifier(value: Any) -> bool:
    return isinstance(value, str) and bool(value) and all(ch.isalnum() or ch == "_" for ch in value)


def table_name(target_entity: str) -> str:
    if not isinstance(target_entity, str):
        return str(target_entity)
    return TABLE_NAMES.get(target_entity.lower(), target_entity)


def validate_relation_config(config: RelationConfig) -> dict:
    errors: List[str] = []
    if not config.target_entity:
        errors.append("target_entity is required")
    elif not _is_identifier(config.target_entity):
        errors.append("target_entity must be a plain name")
    if config.relation_type not in RELATION_TYPES:
        errors.append("relation_type must be one_to_many or many_to_one")
    if not config.foreign_key:
        errors.append("foreign_key is required")
    elif not _is_identifier(config.foreign_key):
        errors.append("foreign_key must be a plain column name")
    if config.lookup_field is not None and not isinstance(config.lookup_field, str):
        errors.append("lookup_field must be a string")
    if config.lookup_field and config.relation_type != "many_to_one":
        errors.append("lookup_field only valid for many_to_one relations")
    if config.rollup is not None:
        if config.relation_type != "one_to_many":
            errors.append("rollup only valid for one_to_many relations")
        operation = config.rollup.get("operation") if isinstance(config.rollup, dict) else None
        if operation not in ROLLUP_OPERATIONS:
            errors.append(f"rollup.operation must be one of: {', '.join(ROLLUP_OPERATIONS)}")
        elif operation != "count" and not config.rollup.get("source_field"):
            errors.append(f"rollup.source_field required for {operation}")
        elif config.rollup.get("source_field") is not None and not isinstance(config.rollup.get("source_field"), str):
            errors.append("rollup.source_field must be a string")
    return {"valid": not errors, "errors": errors}


def _loose_number(value: Any) -> float | None:
    """Numeric value of a row field, or None when it is not numeric.

    A null field is None rather than zero, so ``min``/``max`` ignore rows
    that never set the field.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _tidy(number: float) -> int | float:
    return int(number) if number.is_integer() else number


def perform_rollup(records: List[dict], operation: str, source_field: str | None = None) -> int | float | None:
    """Aggregate ``source_field`` over ``records``.

    An empty set yields ``0`` for ``count`` and ``None`` for every other
    operation. ``sum``/``avg`` treat non-numeric values as zero, ``min``/``max``
    skip them.
    """
    if not records:
        return 0 if operation == "count" else None
    if operation == "count":
        return len(records)
    if not source_field:
        return None
    numbers = [_loose_number(get_path(record, source_field)) for record in records]
    if operation in {"sum", "avg"}:
        total = sum(number or 0.0 for number in numbers)
        return _tidy(total if operation == "sum" else total / len(records))
    if operation in {"min", "max"}:
        present = [number for number in numbers if number is not None]
        if not present:
            return None
        return _tidy(min(present) if operation == "min" else max(present))
    return None


class RelationResolver:
    def __init__(self, store) -> None:
        self._store = store

    def resolve_relation(self, config: RelationConfig, record: dict, tenant_id: str) -> Resolution:
        check = validate_relation_config(config)
        if not check["valid"]:
            return Resolution.failure("RELATION_CONFIG_INVALID", ", ".join(check["errors"]))
        try:
            if config.relation_type == "many_to_one":
                return self._lookup(config, record, tenant_id)
            return self._rollup(config, record, tenant_id)
        except StoreError as exc:
            return Resolution.failure("RELATION_QUERY_FAILED", str(exc) or type(exc).__name__)
        except Exception as exc:
            logger.exception(
                "relation_resolve_crashed tenant_id=%s target_entity=%s",
                tenant_id,
                config.target_entity,
            )
            return Resolution.failure("RELATION_RESOLVE_FAILED", str(exc) or type(exc).__name__)

    def _lookup(self, config: RelationConfig, record: dict, tenant_id: str) -> Resolution:
        foreign_value = record.get(config.foreign_key)
        if not foreign_value:
            return Resolution.success(None)
        related = self._store.get(table_name(config.target_entity), tenant_id, foreign_value)
        if related is None:
            return Resolution.failure("RELATION_TARGET_NOT_FOUND", "Related record not found", config.foreign_key)
        if config.lookup_field:
            return Resolution.success(get_path(related, config.lookup_field))
        return Resolution.success(related)

    def _rollup(self, config: RelationConfig, record: dict, tenant_id: str) -> Resolution:
        rows = self._store.select(
            table_name(config.target_entity),
            tenant_id,
            {config.foreign_key: record.get("id")},
        )
        if not config.rollup:
            return Resolution.success(len(rows))
        return Resolution.success(
            perform_rollup(rows, config.rollup["operation"], config.rollup.get("source_field"))
        )

    def resolve_relation_fields(self, tenant_id: str, entity_type: str, record: dict) -> Dict[str, Any]:
        """Resolve every relation field; each failure becomes ``None`` plus a log line."""
        try:
            definitions = load_definitions(self._store, tenant_id, entity_type)
        except StoreError as exc:
            logger.error(
                "relation_fields_load_failed tenant_id=%s entity_type=%s error=%s",
                tenant_id,
                entity_type,
                exc,
            )
            return {}
        values: Dict[str, Any] = {}
        for definition in definitions:
            if field_kind(definition) != "relation":
                continue
            name = definition.get("field_name")
            result = self.resolve_relation(RelationConfig.from_options(definition["options"]), record, tenant_id)
            values[name] = result.value if result.ok else None
            if not result.ok:
                logger.error(
                    "relation_resolve_failed tenant_id=%s field=%s code=%s error=%s",
                    tenant_id,
                    name,
                    result.error.code,
                    result.error.message,
                )
        return values

    def is_relation_field(self, tenant_id: str, entity_type: str, field_name: str) -> bool:
        definition = get_definition(self._store, tenant_id, entity_type, field_name)
        return bool(definition) and field_kind(definition) == "relation"
