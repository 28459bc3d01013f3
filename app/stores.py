"""In-memory tenant-scoped stores used when USE_DB is off (dev and tests)."""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

TABLES = (
    "deals",
    "contacts",
    "activities",
    "pipelines",
    "pipeline_stages",
    "custom_fields",
    "events",
)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class StoreError(Exception):
    pass


class UnknownTableError(StoreError):
    pass


class RowNotFoundError(StoreError):
    pass


class MultipleRowsError(StoreError):
    pass


class InvalidColumnError(StoreError):
    pass


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise UnknownTableError(f"unknown table: {table}")


def _matches(row: dict, filters: Dict[str, Any] | None) -> bool:
    for key, expected in (filters or {}).items():
        if row.get(key) != expected:
            return False
    return True


def _sort_key(value: Any) -> tuple:
    # None sorts last, like Postgres "nulls last" on ascending order.
    return (value is None, value if value is not None else 0)


class MemoryRecordStore:
    """Rows keyed by table; every call is scoped to one tenant."""

    def __init__(self) -> None:
        self._rows: Dict[str, Dict[str, dict]] = {table: {} for table in TABLES}
        self._lock = threading.Lock()

    def select(
        self,
        table: str,
        tenant_id: str,
        filters: Dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> List[dict]:
        _check_table(table)
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._rows[table].values()
                if row.get("tenant_id") == tenant_id and _matches(row, filters)
            ]
        if order_by:
            rows.sort(key=lambda row: _sort_key(row.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def select_single(self, table: str, tenant_id: str, filters: Dict[str, Any]) -> dict:
        rows = self.select(table, tenant_id, filters, limit=2)
        if not rows:
            raise RowNotFoundError(f"{table}: no row matches {sorted(filters)}")
        if len(rows) > 1:
            raise MultipleRowsError(f"{table}: several rows match {sorted(filters)}")
        return rows[0]

    def get(self, table: str, tenant_id: str, row_id: str) -> dict | None:
        rows = self.select(table, tenant_id, {"id": row_id}, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, tenant_id: str, values: dict) -> dict:
        _check_table(table)
        now = _now()
        row = copy.deepcopy(values)
        row["id"] = str(row.get("id") or uuid.uuid4())
        row["tenant_id"] = tenant_id
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        with self._lock:
            self._rows[table][row["id"]] = row
        return copy.deepcopy(row)

    def update(self, table: str, tenant_id: str, row_id: str, changes: dict) -> dict:
        _check_table(table)
        with self._lock:
            row = self._rows[table].get(row_id)
            if row is None or row.get("tenant_id") != tenant_id:
                raise RowNotFoundError(f"{table}: row not found")
            patch = {k: v for k, v in copy.deepcopy(changes).items() if k not in {"id", "tenant_id"}}
            row.update(patch)
            row["updated_at"] = _now()
            return copy.deepcopy(row)


class MemoryTenantStore:
    def __init__(self) -> None:
        self._tenants: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def create_tenant(self, name: str, settings: dict | None = None, tenant_id: str | None = None) -> dict:
        now = _now()
        tenant = {
            "id": tenant_id or str(uuid.uuid4()),
            "name": name,
            "settings": copy.deepcopy(settings or {}),
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._tenants[tenant["id"]] = tenant
        return copy.deepcopy(tenant)

    def get_tenant(self, tenant_id: str) -> dict | None:
        with self._lock:
            tenant = self._tenants.get(tenant_id)
            return copy.deepcopy(tenant) if tenant else None

    def update_settings(self, tenant_id: str, settings: dict) -> dict:
        with self._lock:
            tenant = self._tenants.get(tenant_id)
            if tenant is None:
                raise RowNotFoundError("tenants: row not found")
            tenant["settings"] = copy.deepcopy(settings)
            tenant["updated_at"] = _now()
            return copy.deepcopy(tenant)
