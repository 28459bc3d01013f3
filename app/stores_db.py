"""Postgres-backed tenant-scoped stores."""

from __future__ import annotations

import copy
import json
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

import psycopg2

from imobi.canonical_json import to_json_safe

from app.db import execute, fetch_all, fetch_one, get_conn
from app.stores import InvalidColumnError, MultipleRowsError, RowNotFoundError, StoreError, UnknownTableError

# Columns holding JSON documents; written as serialized text, read back as objects.
_JSON_COLUMNS = {
    "deals": {"custom_fields"},
    "contacts": {"custom_fields"},
    "activities": {"custom_fields"},
    "pipelines": set(),
    "pipeline_stages": set(),
    "custom_fields": {"options"},
    "events": {"payload"},
}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _ensure_json(value):
    if isinstance(value, str):
        return json.loads(value)
    return value


def _is_safe_column(value: str) -> bool:
    if not value or not isinstance(value, str):
        return False
    return all(ch.isalnum() or ch == "_" for ch in value)


def _check_table(table: str) -> None:
    if table not in _JSON_COLUMNS:
        raise UnknownTableError(f"unknown table: {table}")


def _column(name: str) -> str:
    if not _is_safe_column(name):
        raise InvalidColumnError(f"invalid column name: {name!r}")
    return f'"{name}"'


def _encode(table: str, values: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if key in _JSON_COLUMNS[table] and value is not None:
            out[key] = json.dumps(value, default=str)
        else:
            out[key] = value
    return out


def _decode(table: str, row: dict) -> dict:
    out = {}
    for key, value in row.items():
        if key in _JSON_COLUMNS[table]:
            value = _ensure_json(value)
        out[key] = to_json_safe(value)
    return out


@contextmanager
def _store_errors(table: str):
    try:
        yield
    except psycopg2.Error as exc:
        raise StoreError(f"{table}: {exc.pgerror or exc}") from exc


def _where(tenant_id: str, filters: Dict[str, Any] | None) -> tuple[str, list]:
    clauses = ["tenant_id=%s"]
    params: list = [tenant_id]
    for key, value in (filters or {}).items():
        if value is None:
            clauses.append(f"{_column(key)} is null")
        else:
            clauses.append(f"{_column(key)}=%s")
            params.append(value)
    return " and ".join(clauses), params


class DbRecordStore:
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
        where, params = _where(tenant_id, filters)
        sql = f"select * from {table} where {where}"
        if order_by:
            sql += f" order by {_column(order_by)} {'desc' if descending else 'asc'} nulls last"
        if limit is not None:
            sql += " limit %s"
            params.append(int(limit))
        with _store_errors(table), get_conn() as conn:
            rows = fetch_all(conn, sql, params, query_name=f"{table}.select")
        return [_decode(table, row) for row in rows]

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
        encoded = _encode(table, row)
        columns = ", ".join(_column(key) for key in encoded)
        marks = ", ".join(["%s"] * len(encoded))
        with _store_errors(table), get_conn() as conn:
            inserted = fetch_one(
                conn,
                f"insert into {table} ({columns}) values ({marks}) returning *",
                list(encoded.values()),
                query_name=f"{table}.insert",
            )
        return _decode(table, inserted or row)

    def update(self, table: str, tenant_id: str, row_id: str, changes: dict) -> dict:
        _check_table(table)
        patch = {k: v for k, v in changes.items() if k not in {"id", "tenant_id"}}
        patch["updated_at"] = _now()
        encoded = _encode(table, patch)
        assignments = ", ".join(f"{_column(key)}=%s" for key in encoded)
        with _store_errors(table), get_conn() as conn:
            row = fetch_one(
                conn,
                f"update {table} set {assignments} where tenant_id=%s and id=%s returning *",
                list(encoded.values()) + [tenant_id, row_id],
                query_name=f"{table}.update",
            )
        if row is None:
            raise RowNotFoundError(f"{table}: row not found")
        return _decode(table, row)


class DbTenantStore:
    def get_tenant(self, tenant_id: str) -> dict | None:
        with _store_errors("tenants"), get_conn() as conn:
            row = fetch_one(
                conn,
                "select id, name, settings, created_at, updated_at from tenants where id=%s",
                [tenant_id],
                query_name="tenants.get",
            )
        if not row:
            return None
        row["settings"] = _ensure_json(row.get("settings")) or {}
        return to_json_safe(row)

    def update_settings(self, tenant_id: str, settings: dict) -> dict:
        with _store_errors("tenants"), get_conn() as conn:
            count = execute(
                conn,
                "update tenants set settings=%s, updated_at=%s where id=%s",
                [json.dumps(settings), _now(), tenant_id],
                query_name="tenants.update_settings",
            )
        if not count:
            raise RowNotFoundError("tenants: row not found")
        return self.get_tenant(tenant_id) or {}
