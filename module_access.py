"""Module and navigation visibility for a resolved tenant config."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, List

from field_permissions import ROLE_HIERARCHY, role_at_least
from template_merge import TenantConfig


@dataclass
class ModuleAccessError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


class ModuleNotConfiguredError(ModuleAccessError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("MODULE_NOT_CONFIGURED", message, path)


class ModuleDisabledError(ModuleAccessError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("MODULE_DISABLED", message, path)


class ModuleUnauthorizedError(ModuleAccessError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("UNAUTHORIZED", message, path)


# Static view registry; minimum roles live here, not in tenant config.
MODULE_VIEWS: Dict[str, dict] = {
    "deals": {"id": "deals", "name": "Deals"},
    "contacts": {"id": "contacts", "name": "Contacts"},
    "leads": {"id": "leads", "name": "Leads"},
    "activities": {"id": "activities", "name": "Activities"},
    "properties": {"id": "properties", "name": "Properties"},
    "reports": {"id": "reports", "name": "Reports", "min_role": "manager"},
    "settings": {"id": "settings", "name": "Settings", "min_role": "admin"},
}


def get_module_view(module_id: str) -> dict | None:
    entry = MODULE_VIEWS.get(module_id)
    return dict(entry) if entry else None


def get_module_view_with_fallback(module_id: str) -> dict:
    return get_module_view(module_id) or {"id": module_id, "name": module_id}


def list_registered_modules() -> List[str]:
    return list(MODULE_VIEWS)


def require_module_access(module_id: str, config: TenantConfig, role: str) -> dict:
    """Return the module config or raise the first failing check."""
    module = config.module(module_id)
    if module is None:
        raise ModuleNotConfiguredError(
            f'Module "{module_id}" is not configured for this tenant', "module_id"
        )
    label = module.get("label") or module_id
    if not module.get("enabled"):
        raise ModuleDisabledError(f'Module "{label}" is disabled', "module_id")
    min_role = (MODULE_VIEWS.get(module_id) or {}).get("min_role")
    if min_role and not role_at_least(role, min_role):
        raise ModuleUnauthorizedError(
            f'Insufficient permissions to access "{label}". Required role: {min_role}',
            "module_id",
        )
    return copy.deepcopy(module)


def validate_module_access(module_id: str, config: TenantConfig, role: str) -> dict:
    try:
        module = require_module_access(module_id, config, role)
    except ModuleAccessError as exc:
        return {"valid": False, "error": {"code": exc.code, "message": exc.message}, "module": None}
    return {"valid": True, "error": None, "module": module}


def can_access_module(module_id: str, config: TenantConfig, role: str) -> bool:
    return validate_module_access(module_id, config, role)["valid"]


def can_view_nav_item(item: dict, role: str) -> bool:
    min_role = item.get("min_role")
    if not min_role:
        return True
    return role in ROLE_HIERARCHY and role_at_least(role, min_role)


def is_module_enabled(module_id: str, modules: List[dict]) -> bool:
    for module in modules:
        if module.get("id") == module_id:
            return bool(module.get("enabled"))
    return False


def filter_navigation_items(items: List[dict], modules: List[dict], role: str) -> List[dict]:
    """Drop items the role may not see or whose module is missing/disabled.

    Returns new item dicts; ``items`` is left untouched.
    """
    visible: List[dict] = []
    for item in items:
        if not can_view_nav_item(item, role):
            continue
        module_id = item.get("module_id")
        if module_id and not is_module_enabled(module_id, modules):
            continue
        out = copy.deepcopy(item)
        if isinstance(item.get("children"), list):
            out["children"] = filter_navigation_items(item["children"], modules, role)
        visible.append(out)
    return visible


def sort_navigation_items(items: List[dict]) -> List[dict]:
    return sorted(items, key=lambda item: item.get("order", 0))


def visible_navigation(config: TenantConfig, role: str) -> dict:
    nav = copy.deepcopy(config.navigation or {})
    items = filter_navigation_items(nav.get("sidebar_items") or [], config.modules, role)
    nav["sidebar_items"] = sort_navigation_items(items)
    return nav


def validate_navigation_config(navigation: Dict[str, Any], modules: List[dict]) -> List[str]:
    errors: List[str] = []
    items = navigation.get("sidebar_items") or []
    if not items:
        errors.append("Navigation config has no sidebar items")
    module_ids = {module.get("id") for module in modules}
    for item in items:
        label = item.get("label")
        module_id = item.get("module_id")
        if module_id and module_id not in module_ids:
            errors.append(f'Navigation item "{label}" references unknown module: {module_id}')
        if not item.get("icon"):
            errors.append(f'Navigation item "{label}" has no icon')
        if not item.get("route"):
            errors.append(f'Navigation item "{label}" has no route')
        for child in item.get("children") or []:
            child_module = child.get("module_id")
            if child_module and child_module not in module_ids:
                errors.append(
                    f'Child navigation item "{child.get("label")}" references unknown module: {child_module}'
                )
    return errors


def is_route_active(item_route: str, current_path: str) -> bool:
    if current_path == item_route:
        return True
    return current_path.startswith(item_route.rstrip("/") + "/")
