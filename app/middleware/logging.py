"""
Access logging for the SAML federation service.

Each request gets an ID (taken from ``X-Request-ID`` when a proxy already
assigned one) that is bound to the logging context for the duration of the
request and echoed back in the response headers.

Redirect-binding SAML messages travel in the query string, so only the
names of query parameters are ever logged.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, FrozenSet, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.utils.logging import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

QUIET_PATHS: FrozenSet[str] = frozenset({
    "/",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
})


def _client_address(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request ID, time the request and write one access log line."""

    def __init__(self, app, quiet_paths: Optional[FrozenSet[str]] = None):
        super().__init__(app)
        self.quiet_paths = quiet_paths if quiet_paths is not None else QUIET_PATHS

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        fields: Dict[str, Any] = {
            "http_method": request.method,
            "http_path": request.url.path,
            "http_query_keys": sorted(request.query_params.keys()),
            "client_ip": _client_address(request),
        }
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            logger.error(
                f"{request.method} {request.url.path} raised {type(exc).__name__}",
                extra={"event": "http_request_error", **fields},
                exc_info=True,
            )
            raise
        else:
            duration_ms = (time.perf_counter() - started) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            if request.url.path not in self.quiet_paths:
                logger.log(
                    _level_for(response.status_code),
                    f"{request.method} {request.url.path} {response.status_code} "
                    f"({duration_ms:.2f}ms)",
                    extra={
                        "event": "http_request",
                        "http_status": response.status_code,
                        "duration_ms": round(duration_ms, 2),
                        **fields,
                    },
                )
            return response
        finally:
            clear_request_context()
