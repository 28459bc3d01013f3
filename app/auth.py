"""Tenant/role header middleware.

Headers are set by the upstream auth proxy after session verification; they are
trusted here and not verified again.
"""

from __future__ import annotations

import logging
import os
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

TENANT_HEADER = "X-Tenant-Id"
ROLE_HEADER = "X-User-Role"
USER_HEADER = "X-User-Id"
PUBLIC_PATHS = {"/health"}

logger = logging.getLogger("imobi.auth")


def default_role() -> str:
    return os.getenv("IMOBI_DEFAULT_ROLE", "viewer").strip().lower() or "viewer"


def _unauthorized(path: str | None, message: str) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "errors": [
                {
                    "code": "UNAUTHORIZED",
                    "message": message,
                    "path": path,
                    "detail": None,
                }
            ],
            "warnings": [],
        },
        status_code=401,
    )


class TenantContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        if request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        tenant_id = (request.headers.get(TENANT_HEADER) or "").strip()
        if not tenant_id:
            logger.warning("auth_missing_tenant path=%s", request.url.path)
            return _unauthorized(TENANT_HEADER, "Missing tenant context")

        # Unknown roles pass through; permission checks deny them.
        role = (request.headers.get(ROLE_HEADER) or "").strip().lower() or default_role()
        request.state.tenant_id = tenant_id
        request.state.role = role
        request.state.user_id = (request.headers.get(USER_HEADER) or "").strip() or None
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)
