# tests/test_middleware.py
"""Tests for brewqueue/transport/middleware.py — request ID, logging, error handling."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from brewqueue.infra.metrics import get_metrics_collector
from brewqueue.transport.middleware import (
    dispatch_context,
    route_label,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)


def _build_app(raise_for: set[str] | None = None, log_requests: bool = True):
    """Build a minimal FastAPI app with middleware for testing."""
    app = FastAPI()
    # Order matters: ErrorHandling wraps RequestID
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=log_requests)
    app.add_middleware(RequestIDMiddleware)

    raise_for = raise_for or set()

    @app.get("/test")
    def test_endpoint():
        if "/test" in raise_for:
            raise RuntimeError("boom")
        return {"ok": True}

    @app.get("/api/orders/{order_id}")
    def order_endpoint(order_id: int):
        return {"id": order_id}

    @app.post("/api/baristas/{barista_id}/complete")
    def complete_endpoint(barista_id: int):
        return {"barista": barista_id}

    @app.post("/api/orders")
    def orders_endpoint():
        if "/api/orders" in raise_for:
            raise KeyError("order arena corrupted")
        return {"id": 1}

    return app


# ============================================================================
# RequestIDMiddleware
# ============================================================================

class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        app = _build_app()
        client = TestClient(app)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert "X-Request-ID" in resp.headers
        # Should be a UUID-style string
        rid = resp.headers["X-Request-ID"]
        assert len(rid) >= 32  # UUID has 36 chars with dashes

    def test_preserves_existing_request_id(self):
        app = _build_app()
        client = TestClient(app)
        custom_id = "my-custom-request-id-123"
        resp = client.get("/test", headers={"X-Request-ID": custom_id})
        assert resp.status_code == 200
        assert resp.headers["X-Request-ID"] == custom_id


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================

class TestRequestLoggingMiddleware:
    def test_logs_completed_request(self, caplog):
        app = _build_app()
        client = TestClient(app)
        with caplog.at_level(logging.INFO, logger="brewqueue.transport.middleware"):
            client.get("/test", headers={"X-Request-ID": "rid-1"})

        completed = [r for r in caplog.records if "Request completed" in r.getMessage()]
        assert len(completed) == 1
        assert "status=200" in completed[0].getMessage()
        assert completed[0].request_id == "rid-1"

    def test_disabled_logs_nothing(self, caplog):
        app = _build_app(log_requests=False)
        client = TestClient(app)
        with caplog.at_level(logging.DEBUG, logger="brewqueue.transport.middleware"):
            client.get("/test")

        assert not [r for r in caplog.records if r.name == "brewqueue.transport.middleware"]


# ============================================================================
# ErrorHandlingMiddleware
# ============================================================================

class TestErrorHandlingMiddleware:
    def test_normal_request_passes_through(self):
        app = _build_app()
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_generic_error_returns_500(self):
        app = _build_app(raise_for={"/test"})
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 500
        data = resp.json()
        assert data["error"] == "Internal server error"
        assert "request_id" in data

    def test_error_body_carries_request_id(self):
        app = _build_app(raise_for={"/api/orders"})
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.post("/api/orders", headers={"X-Request-ID": "trace-42"})
        assert resp.status_code == 500
        assert resp.json()["request_id"] == "trace-42"


# ============================================================================
# Dispatch context
# ============================================================================

class TestDispatchContext:
    def test_order_path(self):
        assert dispatch_context("/api/orders/17") == {"order_id": 17}

    def test_barista_path(self):
        assert dispatch_context("/api/baristas/2/complete") == {"worker_id": 2}

    def test_other_paths(self):
        assert dispatch_context("/api/orders") == {}
        assert dispatch_context("/api/stats/baristas") == {}
        assert dispatch_context("/health") == {}

    def test_route_label_collapses_ids(self):
        assert route_label("/api/orders/17") == "/api/orders/{id}"
        assert route_label("/api/baristas/3/complete") == "/api/baristas/{id}/complete"
        assert route_label("/api/stats") == "/api/stats"

    def test_order_request_logged_with_order_id(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.INFO, logger="brewqueue.transport.middleware"):
            client.get("/api/orders/7")

        record = [r for r in caplog.records if "Request completed" in r.getMessage()][-1]
        assert record.order_id == 7
        assert not hasattr(record, "worker_id")

    def test_barista_request_logged_with_worker_id(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.INFO, logger="brewqueue.transport.middleware"):
            client.post("/api/baristas/3/complete")

        record = [r for r in caplog.records if "Request completed" in r.getMessage()][-1]
        assert record.worker_id == 3

    def test_requests_counted_per_route(self):
        client = TestClient(_build_app())
        key = "http_requests_total{method=GET,route=/api/orders/{id},status=200}"
        before = get_metrics_collector().get_metrics()["counters"].get(key, 0)

        client.get("/api/orders/1")
        client.get("/api/orders/2")

        assert get_metrics_collector().get_metrics()["counters"][key] == before + 2
