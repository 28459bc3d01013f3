"""FastAPI app for the IMOBI360 CRM core."""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import functools
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any

import anyio
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from event_bus import EventBus
from field_permissions import role_at_least
from module_access import (
    ModuleAccessError,
    get_module_view_with_fallback,
    require_module_access,
    visible_navigation,
)
from outbox import Outbox
from template_registry import build_default_registry

from app.action_fields import ActionFieldNotFoundError, get_action_field_config, prepare_action
from app.audit_log import fetch_audit_log
from app.auth import TenantContextMiddleware
from app.db import close_pool, get_db_stats, reset_db_stats
from app.errors import CrmError, DeliveryError, ForbiddenError
from app.events import StoreEventLog, drain_pending_events, emit_button_click, spawn_events
from app.mutation_guard import RecordService
from app.stores import MemoryRecordStore, MemoryTenantStore
from app.stores_db import DbRecordStore, DbTenantStore
from app.tenant_config import TenantConfigLoader

logger = logging.getLogger("imobi")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "").strip() == "1"
APP_ENV = os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"
IS_DEV = APP_ENV == "dev"
REQ_SLOW_MS = float(os.getenv("IMOBI_REQ_SLOW_MS", "250"))

if USE_DB:
    record_store = DbRecordStore()
    tenant_store = DbTenantStore()
    outbox = None
    event_log = StoreEventLog(record_store)
else:
    record_store = MemoryRecordStore()
    tenant_store = MemoryTenantStore()
    outbox = Outbox()
    event_log = outbox

event_bus = EventBus(event_log)

template_registry = build_default_registry()
config_loader = TenantConfigLoader(tenant_store, template_registry)
records = RecordService(record_store)

# Status for failed tenant settings operations, by first error code.
_SETTINGS_ERROR_STATUS = {
    "TENANT_NOT_FOUND": 404,
    "TEMPLATE_NOT_FOUND": 404,
    "SETTINGS_SAVE_FAILED": 500,
}
_MODULE_ERROR_STATUS = {
    "MODULE_NOT_CONFIGURED": 404,
    "MODULE_DISABLED": 403,
    "UNAUTHORIZED": 403,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await drain_pending_events()
    if USE_DB:
        close_pool()


app = FastAPI(title="IMOBI360 CRM", lifespan=lifespan)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    db_stats = get_db_stats()
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info(
        "%s %s %s route=%s total_ms=%.1f db_q=%s db_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        route_name,
        total_ms,
        db_stats.get("queries", 0),
        db_stats.get("total_ms", 0.0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s route=%s total_ms=%.1f status=%s",
            request.method,
            request.url.path,
            route_name,
            total_ms,
            response.status_code,
        )
    if IS_DEV:
        response.headers["X-Req-MS"] = f"{total_ms:.1f}"
        response.headers["X-Queries"] = str(db_stats.get("queries", 0))
        response.headers["X-Route"] = route_name
    return response


app.add_middleware(TenantContextMiddleware)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _errors_response(errors: list, status: int) -> JSONResponse:
    return JSONResponse(jsonable_encoder({"ok": False, "errors": errors, "warnings": []}), status_code=status)


@app.exception_handler(CrmError)
async def crm_error_handler(request: Request, exc: CrmError):
    if exc.status >= 500:
        logger.error(
            "request_failed path=%s code=%s tenant_id=%s message=%s",
            request.url.path,
            exc.code,
            getattr(request.state, "tenant_id", None),
            exc.message,
        )
    body = {"ok": False, "errors": exc.to_issues(), "warnings": [], **exc.extra}
    return JSONResponse(jsonable_encoder(body), status_code=exc.status)


@app.exception_handler(ModuleAccessError)
async def module_access_error_handler(request: Request, exc: ModuleAccessError):
    return _error_response(exc.code, exc.message, exc.path, status=_MODULE_ERROR_STATUS.get(exc.code, 403))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


_INVALID_BODY = object()


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return _INVALID_BODY


def _tenant(request: Request) -> str:
    return request.state.tenant_id


def _role(request: Request) -> str:
    return request.state.role


def _require_admin(request: Request) -> None:
    if not role_at_least(_role(request), "admin"):
        raise ForbiddenError("Admin role required")


async def _run(fn, *args):
    return await anyio.to_thread.run_sync(functools.partial(fn, *args))


def _settings_result(result: dict) -> JSONResponse | None:
    if result.get("ok"):
        return None
    errors = result.get("errors") or []
    code = errors[0].get("code") if errors else None
    return _errors_response(errors, _SETTINGS_ERROR_STATUS.get(code, 400))


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


# -- tenant configuration -----------------------------------------------------


@app.get("/api/tenant/config")
async def get_tenant_config(request: Request):
    config = await _run(config_loader.load_tenant_config, _tenant(request))
    return _ok_response({"config": config.to_dict()})


@app.get("/api/tenant/navigation")
async def get_tenant_navigation(request: Request):
    config = await _run(config_loader.load_tenant_config, _tenant(request))
    return _ok_response({"navigation": visible_navigation(config, _role(request))})


@app.get("/api/modules/{module_id}")
async def get_module(request: Request, module_id: str):
    config = await _run(config_loader.load_tenant_config, _tenant(request))
    module = require_module_access(module_id, config, _role(request))
    return _ok_response({"module": module, "view": get_module_view_with_fallback(module_id)})


@app.get("/api/templates")
async def list_templates():
    return _ok_response({"templates": template_registry.list_metadata()})


@app.put("/api/tenant/template")
async def put_tenant_template(request: Request):
    _require_admin(request)
    body = await _json_body(request)
    template_id = body.get("template_id") if isinstance(body, dict) else None
    if not isinstance(template_id, str) or not template_id:
        return _error_response("TEMPLATE_ID_REQUIRED", "template_id is required", "template_id")
    failed = _settings_result(await _run(config_loader.set_tenant_template, _tenant(request), template_id))
    if failed:
        return failed
    config = await _run(config_loader.load_tenant_config, _tenant(request))
    return _ok_response({"config": config.to_dict()})


@app.delete("/api/tenant/template")
async def delete_tenant_template(request: Request):
    _require_admin(request)
    failed = _settings_result(await _run(config_loader.clear_tenant_template, _tenant(request)))
    if failed:
        return failed
    return _ok_response({"template_id": None})


@app.patch("/api/tenant/overrides")
async def patch_tenant_overrides(request: Request):
    _require_admin(request)
    body = await _json_body(request)
    if body is _INVALID_BODY:
        return _error_response("INVALID_PAYLOAD", "Invalid JSON body")
    failed = _settings_result(await _run(config_loader.update_tenant_overrides, _tenant(request), body))
    if failed:
        return failed
    config = await _run(config_loader.load_tenant_config, _tenant(request))
    return _ok_response({"config": config.to_dict()})


# -- records ------------------------------------------------------------------


async def _write(request: Request, fn, *args, status: int = 200) -> JSONResponse:
    body = await _json_body(request)
    if body is _INVALID_BODY:
        return _error_response("INVALID_PAYLOAD", "Invalid JSON body")
    result = await _run(fn, _tenant(request), _role(request), *args, body)
    spawn_events(event_bus, result.events)
    return _ok_response({"record": result.record}, status=status)


@app.post("/api/deals")
async def create_deal(request: Request):
    return await _write(request, records.create_deal, status=201)


@app.get("/api/deals/{deal_id}")
async def get_deal(request: Request, deal_id: str):
    record = await _run(records.get_deal, _tenant(request), deal_id)
    return _ok_response({"record": record})


@app.patch("/api/deals/{deal_id}")
async def update_deal(request: Request, deal_id: str):
    return await _write(request, records.update_deal, deal_id)


@app.post("/api/leads")
async def create_lead(request: Request):
    return await _write(request, records.create_lead, status=201)


@app.get("/api/leads/{lead_id}")
async def get_lead(request: Request, lead_id: str):
    record = await _run(records.get_lead, _tenant(request), lead_id)
    return _ok_response({"record": record})


@app.patch("/api/leads/{lead_id}")
async def update_lead(request: Request, lead_id: str):
    return await _write(request, records.update_lead, lead_id)


# -- audit trail and actions --------------------------------------------------


@app.get("/api/deals/{deal_id}/audit")
async def get_deal_audit(request: Request, deal_id: str, limit: str | None = None):
    await _run(records.fetch_deal, _tenant(request), deal_id)
    entries = await _run(fetch_audit_log, event_log, _tenant(request), "deal", deal_id, limit)
    return _ok_response({"entries": entries})


@app.get("/api/leads/{lead_id}/audit")
async def get_lead_audit(request: Request, lead_id: str, limit: str | None = None):
    await _run(records.fetch_lead, _tenant(request), lead_id)
    entries = await _run(fetch_audit_log, event_log, _tenant(request), "contact", lead_id, limit)
    return _ok_response({"entries": entries})


@app.post("/api/deals/{deal_id}/actions")
async def execute_deal_action(request: Request, deal_id: str):
    body = await _json_body(request)
    if not isinstance(body, dict):
        return _error_response("INVALID_PAYLOAD", "Invalid JSON body")
    field_name = body.get("field_name")
    if not isinstance(field_name, str) or not field_name:
        return _error_response("FIELD_NAME_REQUIRED", "field_name is required", "field_name")
    context = body.get("context") if isinstance(body.get("context"), dict) else None
    tenant_id = _tenant(request)
    deal = await _run(records.fetch_deal, tenant_id, deal_id)
    config = await _run(get_action_field_config, record_store, tenant_id, "deal", field_name)
    if config is None:
        raise ActionFieldNotFoundError(field_name)
    user_id = getattr(request.state, "user_id", None)
    invocation = prepare_action(tenant_id, _role(request), user_id, "deal", deal, field_name, config, context)
    result = await _run(
        emit_button_click,
        event_bus,
        tenant_id,
        invocation.entity_type,
        invocation.entity_id,
        invocation.field_name,
        invocation.metadata,
    )
    if not result["success"]:
        raise DeliveryError(f"Failed to emit event: {result['error']}", {"field_name": field_name})
    return _ok_response({"event_id": result["event_id"], "executed_at": invocation.executed_at})
