"""Tenant configuration merge: core defaults < template manifest < tenant overrides."""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from template_registry import TemplateManifest

CORE_DEFAULTS: Dict[str, Any] = {
    "modules": [],
    "navigation": {
        "sidebar_items": [],
        "show_icons": True,
        "position": "left",
        "user_customizable": True,
    },
    "entity_types": [],
    "views": [],
    "pipelines": [],
    "rbac_presets": {
        "role_labels": {
            "admin": "Administrator",
            "manager": "Manager",
            "member": "Member",
            "viewer": "Viewer",
        },
        "role_descriptions": {
            "admin": "Full system access",
            "manager": "Team management access",
            "member": "Standard user access",
            "viewer": "Read-only access",
        },
        "default_role": "member",
    },
    "settings": {},
}

CONFIG_SECTIONS = ("modules", "navigation", "entity_types", "views", "pipelines", "rbac_presets", "settings")
LIST_OVERRIDE_SECTIONS = ("modules", "entity_types", "views", "pipelines")
OBJECT_OVERRIDE_SECTIONS = ("navigation", "settings")
OVERRIDE_SECTIONS = LIST_OVERRIDE_SECTIONS + OBJECT_OVERRIDE_SECTIONS

# Override entries are matched to base entries by these keys.
IDENTITY_KEYS: Dict[str, Tuple[str, ...]] = {
    "modules": ("id",),
    "entity_types": ("id",),
    "views": ("entity_type_id", "type"),
    "pipelines": ("entity_type_id", "name"),
}


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": detail}


def deep_merge(base: Any, patch: Any) -> Any:
    """Merge ``patch`` over ``base`` without mutating either.

    Objects merge recursively, lists replace wholesale, ``None`` in the patch
    leaves the base value untouched.
    """
    if not isinstance(base, dict) or not isinstance(patch, dict):
        return copy.deepcopy(base if patch is None else patch)
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _is_identity_value(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def identity_of(section: str, item: Any) -> Tuple[Any, ...] | None:
    """Identity key tuple of a list-section entry; None when any key is missing or not a scalar."""
    if not isinstance(item, dict):
        return None
    keys = IDENTITY_KEYS[section]
    if not all(_is_identity_value(item.get(key)) for key in keys):
        return None
    return tuple(item.get(key) for key in keys)


@dataclass
class TenantSettings:
    template_id: str | None = None
    template_version: str | None = None
    template_applied_at: str | None = None
    overrides: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "TenantSettings":
        if not isinstance(data, dict):
            return cls()
        overrides = data.get("overrides")
        return cls(
            template_id=data.get("template_id") or None,
            template_version=data.get("template_version") or None,
            template_applied_at=data.get("template_applied_at") or None,
            overrides=copy.deepcopy(overrides) if isinstance(overrides, dict) else {},
        )

    def to_dict(self) -> dict:
        out: dict = {}
        if self.template_id:
            out["template_id"] = self.template_id
        if self.template_version:
            out["template_version"] = self.template_version
        if self.template_applied_at:
            out["template_applied_at"] = self.template_applied_at
        if self.overrides:
            out["overrides"] = copy.deepcopy(self.overrides)
        return out


@dataclass
class TenantConfig:
    tenant_id: str
    template_id: str | None
    template_version: str | None
    modules: List[dict]
    navigation: Dict[str, Any]
    entity_types: List[dict]
    views: List[dict]
    pipelines: List[dict]
    rbac_presets: Dict[str, Any]
    settings: Dict[str, Any]

    def to_dict(self) -> dict:
        return asdict(self)

    def module(self, module_id: str) -> dict | None:
        for module in self.modules:
            if module.get("id") == module_id:
                return module
        return None

    def entity_type(self, entity_type_id: str) -> dict | None:
        for entity_type in self.entity_types:
            if entity_type.get("id") == entity_type_id:
                return entity_type
        return None


def core_defaults() -> Dict[str, Any]:
    return copy.deepcopy(CORE_DEFAULTS)


def merge_template_with_core(template: TemplateManifest) -> Dict[str, Any]:
    """Template sections replace core defaults wholesale."""
    rbac = template.section("rbac_presets")
    settings = template.section("settings")
    return {
        "modules": template.section("modules"),
        "navigation": template.section("navigation"),
        "entity_types": template.section("entity_types"),
        "views": template.section("views"),
        "pipelines": template.section("pipelines"),
        "rbac_presets": rbac if rbac else copy.deepcopy(CORE_DEFAULTS["rbac_presets"]),
        "settings": settings if settings else {},
    }


def _merge_list_section(section: str, base: List[dict], overrides: List[Any]) -> List[dict]:
    by_identity: Dict[Tuple[Any, ...], dict] = {}
    for item in overrides:
        ident = identity_of(section, item)
        if ident is not None:
            # Later entries for the same identity win.
            by_identity[ident] = deep_merge(by_identity.get(ident, {}), item)
    merged: List[dict] = []
    for item in base:
        patch = by_identity.get(identity_of(section, item))
        merged.append(deep_merge(item, patch) if patch else copy.deepcopy(item))
    return merged


def merge_tenant_overrides(base: Dict[str, Any], overrides: Dict[str, Any] | None) -> Dict[str, Any]:
    """Apply tenant overrides to a merged base config.

    List sections merge entry by entry on their identity keys; entries with no
    matching override pass through, overrides with no matching base entry are
    ignored. ``navigation`` and ``settings`` deep-merge directly.
    """
    result = copy.deepcopy(base)
    if not overrides:
        return result
    for section in LIST_OVERRIDE_SECTIONS:
        patches = overrides.get(section)
        if isinstance(patches, list) and patches:
            result[section] = _merge_list_section(section, base.get(section) or [], patches)
    for section in OBJECT_OVERRIDE_SECTIONS:
        patch = overrides.get(section)
        if isinstance(patch, dict) and patch:
            result[section] = deep_merge(base.get(section) or {}, patch)
    return result


def build_tenant_config(
    tenant_id: str,
    template: TemplateManifest | None,
    tenant_settings: TenantSettings | None = None,
) -> TenantConfig:
    layers = merge_template_with_core(template) if template else core_defaults()
    overrides = tenant_settings.overrides if tenant_settings else None
    merged = merge_tenant_overrides(layers, overrides)
    return TenantConfig(
        tenant_id=tenant_id,
        template_id=template.id if template else None,
        template_version=template.version if template else None,
        **{section: merged[section] for section in CONFIG_SECTIONS},
    )


def _nav_module_refs(items: List[Any], path: str) -> List[Tuple[str, Any]]:
    refs: List[Tuple[str, Any]] = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        item_path = f"{path}[{idx}]"
        refs.append((item_path, item.get("module_id")))
        children = item.get("children")
        if isinstance(children, list):
            refs.extend(_nav_module_refs(children, f"{item_path}.children"))
    return refs


def validate_tenant_config(config: TenantConfig) -> List[dict]:
    """Return one issue per integrity violation; empty when the config is usable."""
    issues: List[dict] = []
    if not config.tenant_id:
        issues.append(_issue("CONFIG_MISSING_TENANT", "Missing tenant_id", "tenant_id"))
    if not config.modules:
        issues.append(_issue("CONFIG_NO_MODULES", "No modules configured", "modules"))
    if not config.entity_types:
        issues.append(_issue("CONFIG_NO_ENTITY_TYPES", "No entity types configured", "entity_types"))
    sidebar = (config.navigation or {}).get("sidebar_items") or []
    if not sidebar:
        issues.append(
            _issue("CONFIG_NO_NAVIGATION", "No navigation items configured", "navigation.sidebar_items")
        )

    entity_ids = {et.get("id") for et in config.entity_types if isinstance(et, dict)}

    def check_refs(section: str, label: Callable[[dict], Any], optional: bool) -> None:
        for idx, item in enumerate(getattr(config, section)):
            ref = item.get("entity_type_id")
            if optional and ref is None:
                continue
            if ref not in entity_ids:
                issues.append(
                    _issue(
                        "CONFIG_UNKNOWN_ENTITY_TYPE",
                        f'{section[:-1].capitalize()} "{label(item)}" references unknown entity_type_id: {ref}',
                        f"{section}[{idx}].entity_type_id",
                        {"entity_type_id": ref},
                    )
                )

    check_refs("modules", lambda m: m.get("id"), optional=True)
    check_refs("views", lambda v: v.get("label"), optional=False)
    check_refs("pipelines", lambda p: p.get("name"), optional=False)

    module_ids = {m.get("id") for m in config.modules if isinstance(m, dict)}
    for path, module_id in _nav_module_refs(sidebar, "navigation.sidebar_items"):
        if module_id is not None and module_id not in module_ids:
            issues.append(
                _issue(
                    "CONFIG_UNKNOWN_MODULE",
                    f"Navigation item references unknown module_id: {module_id}",
                    f"{path}.module_id",
                    {"module_id": module_id},
                )
            )
    return issues


def validate_overrides(overrides: Any) -> List[dict]:
    """Shape check for an overrides patch before it is persisted."""
    if not isinstance(overrides, dict):
        return [_issue("OVERRIDES_INVALID", "overrides must be object", "overrides")]
    issues: List[dict] = []
    for key, value in overrides.items():
        path = f"overrides.{key}"
        if key not in OVERRIDE_SECTIONS:
            issues.append(_issue("OVERRIDES_UNKNOWN_SECTION", f"Unknown overrides section: {key}", path))
            continue
        if key in OBJECT_OVERRIDE_SECTIONS:
            if not isinstance(value, dict):
                issues.append(_issue("OVERRIDES_INVALID", f"{key} must be object", path))
            continue
        if not isinstance(value, list):
            issues.append(_issue("OVERRIDES_INVALID", f"{key} must be list", path))
            continue
        keys = IDENTITY_KEYS[key]
        for idx, item in enumerate(value):
            bad = [
                name
                for name in keys
                if isinstance(item, dict) and item.get(name) is not None and not _is_identity_value(item.get(name))
            ]
            if bad:
                issues.append(
                    _issue(
                        "OVERRIDES_INVALID_IDENTITY",
                        f"{key} identity fields must be strings or numbers: {', '.join(bad)}",
                        f"{path}[{idx}]",
                    )
                )
                continue
            if identity_of(key, item) is None:
                issues.append(
                    _issue(
                        "OVERRIDES_MISSING_IDENTITY",
                        f"{key} entries require {', '.join(keys)}",
                        f"{path}[{idx}]",
                    )
                )
    return issues


def merge_override_patch(existing: Dict[str, Any] | None, patch: Dict[str, Any]) -> Dict[str, Any]:
    """Fold a new overrides patch into stored overrides.

    Entries matching an existing override by identity are deep-merged into it,
    new entries are appended. Sections absent from the patch are untouched.
    """
    result = copy.deepcopy(existing or {})
    for section in LIST_OVERRIDE_SECTIONS:
        incoming = patch.get(section)
        if not isinstance(incoming, list):
            continue
        current = [copy.deepcopy(item) for item in result.get(section) or []]
        positions = {identity_of(section, item): idx for idx, item in enumerate(current)}
        for item in incoming:
            ident = identity_of(section, item)
            if ident in positions:
                current[positions[ident]] = deep_merge(current[positions[ident]], item)
            else:
                positions[ident] = len(current)
                current.append(copy.deepcopy(item))
        result[section] = current
    for section in OBJECT_OVERRIDE_SECTIONS:
        incoming = patch.get(section)
        if isinstance(incoming, dict):
            result[section] = deep_merge(result.get(section) or {}, incoming)
    return result
