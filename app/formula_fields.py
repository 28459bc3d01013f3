"""Formula fields: definitions stored per tenant, evaluated on read."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from expression_eval import RETURN_TYPES, ExpressionEvalError, coerce_value, evaluate
from imobi.record_path import get_path

from app.custom_fields import field_kind, get_definition, load_definitions
from app.errors import Resolution
from app.stores import StoreError

logger = logging.getLogger("imobi.formula")


@dataclass(frozen=True)
class FormulaConfig:
    expression: str
    dependencies: List[str] = field(default_factory=list)
    return_type: str = "string"
    kind: str = "formula"

    @classmethod
    def from_options(cls, options: dict) -> "FormulaConfig":
        return cls(
            expression=options["expression"],
            dependencies=list(options.get("dependencies") or []),
            return_type=options["return_type"],
        )


def validate_formula_config(options: Any) -> dict:
    errors: List[str] = []
    if not isinstance(options, dict):
        return {"valid": False, "errors": ["Formula config must be an object"]}
    if options.get("kind") != "formula":
        errors.append('Config must have kind = "formula"')
    expression = options.get("expression")
    if not expression or not isinstance(expression, str):
        errors.append("Formula must have a valid expression string")
    deps = options.get("dependencies")
    if not isinstance(deps, list) or not all(isinstance(dep, str) for dep in deps):
        errors.append("Formula must have dependencies array")
    if options.get("return_type") not in RETURN_TYPES:
        errors.append("Invalid return_type. Must be number, string, or boolean")
    return {"valid": not errors, "errors": errors}


def resolve_dependencies(dependencies: List[str], record: dict) -> Dict[str, Any]:
    return {dep: get_path(record, dep) for dep in dependencies}


def evaluate_formula(config: FormulaConfig, record: dict) -> Resolution:
    try:
        variables = resolve_dependencies(config.dependencies, record)
        value = evaluate(config.expression, variables)
        return Resolution.success(coerce_value(value, config.return_type))
    except ExpressionEvalError as exc:
        return Resolution.failure(exc.code, exc.message, exc.path)
    except (ArithmeticError, RecursionError) as exc:
        return Resolution.failure("EXPR_EVAL_FAILED", str(exc) or type(exc).__name__)


class FormulaResolver:
    def __init__(self, store) -> None:
        self._store = store

    def resolve_formula_fields(self, tenant_id: str, entity_type: str, record: dict) -> Dict[str, Any]:
        """Evaluate every formula field of ``entity_type`` against ``record``.

        Broken definitions and evaluation errors resolve to ``None`` and are
        logged; this never raises.
        """
        try:
            definitions = load_definitions(self._store, tenant_id, entity_type)
        except StoreError as exc:
            logger.error(
                "formula_fields_load_failed tenant_id=%s entity_type=%s error=%s",
                tenant_id,
                entity_type,
                exc,
            )
            return {}
        values: Dict[str, Any] = {}
        for definition in definitions:
            if field_kind(definition) != "formula":
                continue
            name = definition.get("field_name")
            options = definition.get("options")
            check = validate_formula_config(options)
            if not check["valid"]:
                values[name] = None
                logger.error(
                    "formula_config_invalid tenant_id=%s field=%s errors=%s",
                    tenant_id,
                    name,
                    check["errors"],
                )
                continue
            result = evaluate_formula(FormulaConfig.from_options(options), record)
            values[name] = result.value if result.ok else None
            if not result.ok:
                logger.error(
                    "formula_eval_failed tenant_id=%s field=%s code=%s error=%s",
                    tenant_id,
                    name,
                    result.error.code,
                    result.error.message,
                )
        return values

    def get_formula_config(self, tenant_id: str, entity_type: str, field_name: str) -> FormulaConfig | None:
        definition = get_definition(self._store, tenant_id, entity_type, field_name)
        if not definition or field_kind(definition) != "formula":
            return None
        options = definition["options"]
        if not validate_formula_config(options)["valid"]:
            return None
        return FormulaConfig.from_options(options)

    def is_formula_field(self, tenant_id: str, entity_type: str, field_name: str) -> bool:
        definition = get_definition(self._store, tenant_id, entity_type, field_name)
        return bool(definition) and field_kind(definition) == "formula"
