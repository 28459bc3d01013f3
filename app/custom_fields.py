"""Custom field definitions as stored per tenant and entity type."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from app.stores import StoreError

logger = logging.getLogger("imobi.custom_fields")

COMPUTED_KINDS = ("formula", "relation")


def field_kind(definition: dict) -> str | None:
    options = definition.get("options")
    if isinstance(options, dict):
        kind = options.get("kind")
        if kind in COMPUTED_KINDS:
            return kind
    return None


def load_definitions(store, tenant_id: str, entity_type: str) -> List[dict]:
    """Definitions ordered by position. Raises StoreError when storage fails."""
    return store.select(
        "custom_fields",
        tenant_id,
        {"entity_type": entity_type},
        order_by="position",
    )


def get_definition(store, tenant_id: str, entity_type: str, field_name: str) -> dict | None:
    try:
        return store.select_single(
            "custom_fields",
            tenant_id,
            {"entity_type": entity_type, "field_name": field_name},
        )
    except StoreError as exc:
        logger.info(
            "custom_field_lookup_miss tenant_id=%s entity_type=%s field=%s error=%s",
            tenant_id,
            entity_type,
            field_name,
            exc,
        )
        return None


def computed_field_kinds(store, tenant_id: str, entity_type: str) -> Dict[str, str]:
    """Map of computed field name to kind (``formula`` or ``relation``)."""
    return kinds_of(load_definitions(store, tenant_id, entity_type))


def kinds_of(definitions: List[dict]) -> Dict[str, str]:
    kinds: Dict[str, str] = {}
    for definition in definitions:
        kind = field_kind(definition)
        if kind and definition.get("field_name"):
            kinds[definition["field_name"]] = kind
    return kinds


def permission_configs(definitions: List[dict]) -> Dict[str, Dict[str, Any]]:
    """Per-field ``required_role``/``is_editable`` settings for permission checks."""
    configs: Dict[str, Dict[str, Any]] = {}
    for definition in definitions:
        options = definition.get("options") if isinstance(definition.get("options"), dict) else {}
        entry = {}
        if options.get("required_role"):
            entry["required_role"] = options["required_role"]
        if options.get("is_editable") is False:
            entry["is_editable"] = False
        if entry and definition.get("field_name"):
            configs[definition["field_name"]] = entry
    return configs
