"""Read-only registry of template manifests."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

MANIFEST_SECTIONS = (
    "modules",
    "navigation",
    "entity_types",
    "views",
    "field_presets",
    "pipelines",
    "rbac_presets",
    "settings",
)


class TemplateRegistryError(ValueError):
    pass


@dataclass(frozen=True)
class TemplateManifest:
    id: str
    name: str
    version: str
    description: str = ""
    category: str = "general"
    locale: str = "en"
    author: str | None = None
    modules: List[dict] = field(default_factory=list)
    navigation: Dict[str, Any] = field(default_factory=dict)
    entity_types: List[dict] = field(default_factory=list)
    views: List[dict] = field(default_factory=list)
    field_presets: List[dict] = field(default_factory=list)
    pipelines: List[dict] = field(default_factory=list)
    rbac_presets: Dict[str, Any] | None = None
    settings: Dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "TemplateManifest":
        if not isinstance(data, dict):
            raise TemplateRegistryError("manifest must be object")
        for key in ("id", "name", "version"):
            if not isinstance(data.get(key), str) or not data.get(key):
                raise TemplateRegistryError(f"manifest.{key} is required")
        known = {f for f in cls.__dataclass_fields__}
        unknown = sorted(set(data) - known)
        if unknown:
            raise TemplateRegistryError(f"unknown manifest keys: {', '.join(unknown)}")
        return cls(**copy.deepcopy(data))

    def section(self, name: str) -> Any:
        """Deep copy of one configuration section; callers may mutate it freely."""
        if name not in MANIFEST_SECTIONS:
            raise KeyError(name)
        return copy.deepcopy(getattr(self, name))

    def metadata(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "version": self.version,
        }


class TemplateRegistry:
    """Immutable lookup of manifests by id, built once at startup."""

    def __init__(self, manifests: Iterable[TemplateManifest]) -> None:
        entries: Dict[str, TemplateManifest] = {}
        for manifest in manifests:
            if manifest.id in entries:
                raise TemplateRegistryError(f"duplicate template id: {manifest.id}")
            entries[manifest.id] = manifest
        self._entries = entries

    def get(self, template_id: str | None) -> TemplateManifest | None:
        if not template_id:
            return None
        return self._entries.get(template_id)

    def has(self, template_id: str | None) -> bool:
        return bool(template_id) and template_id in self._entries

    def list(self) -> List[TemplateManifest]:
        return list(self._entries.values())

    def list_metadata(self) -> List[dict]:
        return [manifest.metadata() for manifest in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, template_id: object) -> bool:
        return isinstance(template_id, str) and template_id in self._entries


def build_default_registry() -> TemplateRegistry:
    from templates import BUILTIN_MANIFESTS

    return TemplateRegistry(BUILTIN_MANIFESTS)
