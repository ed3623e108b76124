import logging
from time import perf_counter
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.infrastructure.logging.context import (
    reset_request_id,
    reset_site_id,
    set_request_id,
    set_site_id,
)
from app.infrastructure.observability.metrics import record_request

logger = logging.getLogger("app")


class SiteContextMiddleware(BaseHTTPMiddleware):
    """Tags log lines of /sites/{id}/... requests with the site id."""

    async def dispatch(self, request: Request, call_next):
        parts = request.url.path.strip("/").split("/")
        site_token = None
        if len(parts) >= 2 and parts[0] == "sites" and parts[1].isdigit():
            site_token = set_site_id(parts[1])
        try:
            return await call_next(request)
        finally:
            if site_token is not None:
                reset_site_id(site_token)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started_at = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            record_request(
                method=request.method,
                path=getattr(route, "path", request.url.path),
                status_code=status_code,
                duration_seconds=perf_counter() - started_at,
            )


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        request_token = set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            reset_request_id(request_token)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response
