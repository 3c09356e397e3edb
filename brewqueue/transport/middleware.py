# brewqueue/transport/middleware.py
"""
HTTP middleware: request ids, per-route request logging, and a last-resort
500 handler.

Dispatch routes carry an order or barista id in the path; both are pulled
out before routing so request logs line up with the dispatcher's own
``order_id`` / ``worker_id`` log context.
"""
import re
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from brewqueue.infra.logging_config import get_logger, LogContext
from brewqueue.infra.metrics import inc_counter, observe_histogram

logger = get_logger(__name__)

_ORDER_PATH = re.compile(r"^/api/orders/(\d+)$")
_BARISTA_PATH = re.compile(r"^/api/baristas/(\d+)(?:/|$)")
_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")


def dispatch_context(path: str) -> dict:
    """LogContext kwargs for an order or barista path, empty otherwise"""
    match = _ORDER_PATH.match(path)
    if match:
        return {"order_id": int(match.group(1))}
    match = _BARISTA_PATH.match(path)
    if match:
        return {"worker_id": int(match.group(1))}
    return {}


def route_label(path: str) -> str:
    """/api/orders/17 -> /api/orders/{id}; keeps metric cardinality bounded"""
    return _NUMERIC_SEGMENT.sub("/{id}", path)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request for tracing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its dispatch context and record per-route metrics"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        path = request.url.path
        route = route_label(path)
        log_ctx = LogContext(
            logger,
            request_id=getattr(request.state, "request_id", "unknown"),
            **dispatch_context(path),
        )
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            log_ctx.error(
                f"{request.method} {route} failed: {exc.__class__.__name__}",
                exc_info=True
            )
            inc_counter("http_requests_total", method=request.method, route=route, status=500)
            raise

        duration = time.perf_counter() - started
        inc_counter("http_requests_total", method=request.method, route=route, status=response.status_code)
        observe_histogram("http_request_seconds", duration, route=route)

        log = log_ctx.warning if response.status_code >= 500 else log_ctx.info
        log(
            f"Request completed: {request.method} {path} "
            f"status={response.status_code} duration={duration * 1000:.2f}ms"
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn anything the routes did not handle into a generic 500"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "unknown")
            LogContext(logger, request_id=request_id, **dispatch_context(request.url.path)).error(
                f"Unhandled exception: {exc.__class__.__name__}: {exc}",
                exc_info=True
            )

            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "request_id": request_id,
                }
            )
