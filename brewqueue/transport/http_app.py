# brewqueue/transport/http_app.py
"""
HTTP application for the barista order dispatcher.

Layers:
1. Public: health probe
2. Ordering: submit / inspect orders
3. Operator: baristas, stats, alerts, manual completion, recalculation, simulation
4. Monitoring: in-process metrics

Route handlers are thin adapters: parse request → call dispatcher → map
``None`` to ``NotFoundError`` → return a view model.  Dispatch routes are
plain ``def`` endpoints (threadpool); the dispatcher's lock serializes them
against the background timers.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Depends, Query
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from brewqueue.config import settings
from brewqueue.api.errors import DispatchError, NotFoundError, ValidationError
from brewqueue.api.models import (
    OkResponse,
    OrderRequest,
    OrderView,
    StatsView,
    TrialView,
    WorkerStatsView,
    WorkerView,
)
from brewqueue.core.dispatch.dispatcher import Dispatcher
from brewqueue.core.dispatch.timers import CompletionTimer, RecalculationLoop
from brewqueue.core.simulation.simulator import SimulationConfig, Simulator
from brewqueue.infra.complaint_sink import get_complaint_sink
from brewqueue.infra.logging_config import setup_logging, get_logger
from brewqueue.infra.metrics import get_metrics_collector
from brewqueue.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_dispatcher(request: Request) -> Dispatcher:
    """Get dispatcher from app state"""
    return request.app.state.dispatcher


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(
        f"Starting dispatcher: env={settings.app_env}, baristas={settings.worker_names}"
    )

    dispatcher = Dispatcher(settings.worker_names)
    sink = get_complaint_sink(settings.complaint_sink)
    fastapi_app.state.dispatcher = dispatcher
    fastapi_app.state.complaint_sink = sink
    logger.info(f"Complaint sink: {sink.name}")

    timers = []
    if settings.dispatch_loops_enabled:
        timers = [
            RecalculationLoop(dispatcher, interval=settings.recalculation_interval_seconds),
            CompletionTimer(dispatcher, sink, interval=settings.completion_interval_seconds),
        ]
        for timer in timers:
            await timer.start()
    else:
        logger.info("Dispatch loops skipped (dispatch_loops_enabled=false)")
    fastapi_app.state.timers = timers

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    for timer in timers:
        await timer.stop()

    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="brewqueue",
    description="Priority-driven barista order dispatcher",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    # More permissive in dev (frontend runs on a different port)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    """Map typed API errors to JSON"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Basic liveness check."""
    return {"status": "healthy"}


@app.get("/metrics")
def metrics():
    """Operational counters and histograms."""
    return get_metrics_collector().get_metrics()


# ============================================================================
# ORDER ENDPOINTS
# ============================================================================

@app.post("/api/orders", response_model=OrderView)
def create_order(payload: OrderRequest, dispatcher: Dispatcher = Depends(get_dispatcher)):
    """
    Submit an order.

    The response carries the initial priority and its explanation.  If a
    barista is idle the order is already ``in_progress``.
    """
    order = dispatcher.submit(
        payload.drink_name,
        payload.prep_time_minutes,
        loyalty_tier=payload.loyalty_tier,
        is_regular_customer=payload.is_regular_customer,
        owner=payload.username,
    )
    return OrderView.from_order(order, dispatcher.now())


@app.get("/api/orders", response_model=list[OrderView])
def list_queue(
    username: str | None = None,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Pending orders, highest priority first."""
    now = dispatcher.now()
    return [OrderView.from_order(o, now) for o in dispatcher.get_queue(username)]


@app.get("/api/orders/{order_id}", response_model=OrderView)
def get_order(order_id: int, dispatcher: Dispatcher = Depends(get_dispatcher)):
    order = dispatcher.get_order(order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return OrderView.from_order(order, dispatcher.now())


# ============================================================================
# BARISTA ENDPOINTS
# ============================================================================

@app.get("/api/baristas", response_model=list[WorkerView])
def list_baristas(dispatcher: Dispatcher = Depends(get_dispatcher)):
    return [WorkerView.from_worker(w) for w in dispatcher.get_workers()]


@app.post("/api/baristas/{barista_id}/complete", response_model=OrderView)
def complete_order(barista_id: int, dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Manually finish a barista's current order and refill from the queue."""
    completed = dispatcher.complete_order(barista_id)
    if completed is None:
        raise NotFoundError(f"Barista {barista_id} not found or has no order in progress")
    return OrderView.from_order(completed, dispatcher.now())


# ============================================================================
# STATS & ALERTS
# ============================================================================

@app.get("/api/stats", response_model=StatsView)
def get_stats(
    username: str | None = None,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return StatsView.from_stats(dispatcher.get_stats(username))


@app.get("/api/stats/baristas", response_model=list[WorkerStatsView])
def get_barista_stats(dispatcher: Dispatcher = Depends(get_dispatcher)):
    return [WorkerStatsView.from_stats(s) for s in dispatcher.get_worker_stats()]


@app.get("/api/alerts", response_model=list[str])
def get_alerts(dispatcher: Dispatcher = Depends(get_dispatcher)):
    return dispatcher.get_alerts()


@app.delete("/api/alerts", response_model=OkResponse)
def clear_alerts(dispatcher: Dispatcher = Depends(get_dispatcher)):
    cleared = dispatcher.clear_alerts()
    logger.info(f"Alerts cleared: {cleared}")
    return OkResponse(message="Alerts cleared", cleared=cleared)


@app.post("/api/recalculate", response_model=OkResponse)
def recalculate(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Run the recalculation sweep now instead of waiting for the loop."""
    dispatcher.recalculate()
    return OkResponse(message="Priorities recalculated")


# ============================================================================
# SIMULATION
# ============================================================================

@app.post("/api/simulation/run", response_model=list[TrialView])
def run_simulation(
    test_cases: int = Query(default=settings.simulation_default_trials, ge=1),
    seed: int | None = None,
):
    """
    Run independent simulator trials with the live scoring policy.
    Does not touch the live queue.
    """
    if test_cases > settings.simulation_max_trials:
        raise ValidationError(
            f"test_cases must be at most {settings.simulation_max_trials}"
        )

    config = SimulationConfig(
        arrival_rate_per_minute=settings.simulation_arrival_rate,
        horizon_minutes=settings.simulation_horizon_minutes,
        worker_count=len(settings.worker_names),
    )
    logger.info(f"Simulation requested: test_cases={test_cases}, seed={seed}")
    results = Simulator(config).run(test_cases, seed=seed)
    return [TrialView.from_result(r) for r in results]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "brewqueue.transport.http_app:app",
        host="0.0.0.0",
        port=8080,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # Middleware logs requests instead
        server_header=False,
    )
