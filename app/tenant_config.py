"""Tenant configuration loader.

Builds the runtime ``TenantConfig`` for a tenant from its stored settings:
core defaults < template manifest < tenant overrides, then validates it. A
config that fails validation raises ``ConfigurationError``; it is never served
partially.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

from imobi.settings_fingerprint import settings_fingerprint
from template_merge import (
    TenantConfig,
    TenantSettings,
    build_tenant_config,
    merge_override_patch,
    validate_overrides,
    validate_tenant_config,
)
from template_registry import TemplateRegistry

from app.errors import ConfigurationError, TenantNotFoundError
from app.stores import RowNotFoundError, StoreError

logger = logging.getLogger("imobi.tenant_config")

_TEMPLATE_KEYS = ("template_id", "template_version", "template_applied_at")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _cache_ttl_s() -> float:
    return float(os.getenv("IMOBI_CONFIG_CACHE_TTL", "30"))


class TenantConfigLoader:
    def __init__(self, tenant_store, registry: TemplateRegistry, cache_ttl_s: float | None = None) -> None:
        self._tenants = tenant_store
        self._registry = registry
        self._ttl = _cache_ttl_s() if cache_ttl_s is None else cache_ttl_s
        self._cache: Dict[str, dict] = {}  # tenant_id -> {value, ts}
        self._generation: Dict[str, int] = {}  # tenant_id -> bumped on every invalidate
        self._epoch = 0  # bumped when the whole cache is dropped
        self._lock = threading.Lock()

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    def _raw_settings(self, tenant_id: str) -> Dict[str, Any]:
        tenant = self._tenants.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        settings = tenant.get("settings")
        return copy.deepcopy(settings) if isinstance(settings, dict) else {}

    def _cached(self, tenant_id: str) -> TenantConfig | None:
        if self._ttl <= 0:
            return None
        with self._lock:
            entry = self._cache.get(tenant_id)
        if entry and time.monotonic() - entry["ts"] < self._ttl:
            return copy.deepcopy(entry["value"])
        return None

    def invalidate(self, tenant_id: str | None = None) -> None:
        with self._lock:
            if tenant_id is None:
                self._cache.clear()
                self._epoch += 1
            else:
                self._cache.pop(tenant_id, None)
                self._generation[tenant_id] = self._generation.get(tenant_id, 0) + 1

    def _stamp(self, tenant_id: str) -> tuple:
        with self._lock:
            return (self._epoch, self._generation.get(tenant_id, 0))

    def load_tenant_config(self, tenant_id: str) -> TenantConfig:
        cached = self._cached(tenant_id)
        if cached is not None:
            return cached
        stamp = self._stamp(tenant_id)
        try:
            raw = self._raw_settings(tenant_id)
        except StoreError as exc:
            logger.error("tenant_settings_load_failed tenant_id=%s error=%s", tenant_id, exc)
            raise ConfigurationError(f"Tenant settings unavailable: {exc}", detail={"tenant_id": tenant_id}) from exc
        tenant_settings = TenantSettings.from_dict(raw)
        template = None
        if tenant_settings.template_id:
            template = self._registry.get(tenant_settings.template_id)
            if template is None:
                logger.warning(
                    "template_missing tenant_id=%s template_id=%s fallback=core_defaults",
                    tenant_id,
                    tenant_settings.template_id,
                )
        config = build_tenant_config(tenant_id, template, tenant_settings)
        issues = validate_tenant_config(config)
        if issues:
            logger.error(
                "tenant_config_invalid tenant_id=%s template_id=%s issues=%s",
                tenant_id,
                tenant_settings.template_id,
                [issue["message"] for issue in issues],
            )
            raise ConfigurationError(
                "Invalid tenant configuration: " + ", ".join(issue["message"] for issue in issues),
                issues,
                {"tenant_id": tenant_id},
            )
        if self._ttl > 0:
            with self._lock:
                # A save that landed during the read leaves this result stale.
                if (self._epoch, self._generation.get(tenant_id, 0)) == stamp:
                    self._cache[tenant_id] = {"value": copy.deepcopy(config), "ts": time.monotonic()}
        return config

    def get_tenant_template_id(self, tenant_id: str) -> str | None:
        try:
            raw = self._raw_settings(tenant_id)
        except TenantNotFoundError:
            return None
        return TenantSettings.from_dict(raw).template_id

    def _save(self, tenant_id: str, settings: Dict[str, Any], action: str) -> dict:
        try:
            self._tenants.update_settings(tenant_id, settings)
        except RowNotFoundError:
            return {"ok": False, "errors": [_issue("TENANT_NOT_FOUND", f"Tenant not found: {tenant_id}", "tenant_id")]}
        except StoreError as exc:
            logger.error("tenant_settings_save_failed tenant_id=%s action=%s error=%s", tenant_id, action, exc)
            return {"ok": False, "errors": [_issue("SETTINGS_SAVE_FAILED", str(exc))]}
        finally:
            self.invalidate(tenant_id)
        logger.info(
            "tenant_settings_saved tenant_id=%s action=%s fingerprint=%s",
            tenant_id,
            action,
            settings_fingerprint(settings),
        )
        return {"ok": True, "errors": []}

    def _load_for_update(self, tenant_id: str) -> Dict[str, Any] | List[dict]:
        try:
            return self._raw_settings(tenant_id)
        except TenantNotFoundError:
            return [_issue("TENANT_NOT_FOUND", f"Tenant not found: {tenant_id}", "tenant_id")]

    def set_tenant_template(self, tenant_id: str, template_id: str) -> dict:
        """Point the tenant at ``template_id``; existing overrides are kept."""
        template = self._registry.get(template_id)
        if template is None:
            return {"ok": False, "errors": [_issue("TEMPLATE_NOT_FOUND", f"Template not found: {template_id}", "template_id")]}
        current = self._load_for_update(tenant_id)
        if isinstance(current, list):
            return {"ok": False, "errors": current}
        current.update(
            {
                "template_id": template.id,
                "template_version": template.version,
                "template_applied_at": _now(),
            }
        )
        return self._save(tenant_id, current, "set_template")

    def update_tenant_overrides(self, tenant_id: str, patch: Any) -> dict:
        """Fold ``patch`` into the stored overrides (targeted, never wholesale)."""
        issues = validate_overrides(patch)
        if issues:
            return {"ok": False, "errors": issues}
        current = self._load_for_update(tenant_id)
        if isinstance(current, list):
            return {"ok": False, "errors": current}
        existing = current.get("overrides") if isinstance(current.get("overrides"), dict) else {}
        current["overrides"] = merge_override_patch(existing, patch)
        return self._save(tenant_id, current, "update_overrides")

    def clear_tenant_template(self, tenant_id: str) -> dict:
        """Drop the template assignment; overrides stay."""
        current = self._load_for_update(tenant_id)
        if isinstance(current, list):
            return {"ok": False, "errors": current}
        for key in _TEMPLATE_KEYS:
            current.pop(key, None)
        return self._save(tenant_id, current, "clear_template")
