# brewqueue/api/models.py
"""
Pydantic request/response models for the dispatch API.

These live *outside* the transport layer so views can be built from core
snapshots without depending on FastAPI.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from brewqueue.core.dispatch.domain import (
    DispatchStats,
    Order,
    OrderStatus,
    Worker,
    WorkerStats,
)
from brewqueue.core.simulation.simulator import TrialResult


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class OrderRequest(BaseModel):
    """
    Submit a new order.

    Out-of-range prep times and tiers are clamped by the dispatcher, not
    rejected here.
    """

    drink_name: str = Field(..., min_length=1, max_length=100)
    prep_time_minutes: int = Field(..., description="Clamped to 2-8")
    loyalty_tier: int = Field(default=1, description="Clamped to 1-5")
    is_regular_customer: bool = False
    username: str | None = Field(default=None, max_length=50)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class OrderView(BaseModel):
    id: int
    drink_name: str
    prep_time_minutes: int
    loyalty_tier: int
    is_regular_customer: bool
    username: str | None
    arrival_time: datetime
    wait_minutes: float
    priority: float
    priority_explanation: str
    skip_count: int
    status: OrderStatus
    assigned_barista_id: int | None
    started_at: datetime | None
    completed_at: datetime | None
    timeout_notified: bool

    @classmethod
    def from_order(cls, order: Order, now: datetime) -> "OrderView":
        return cls(
            id=order.id,
            drink_name=order.drink_name,
            prep_time_minutes=order.prep_time_minutes,
            loyalty_tier=order.loyalty_tier,
            is_regular_customer=order.is_regular_customer,
            username=order.owner,
            arrival_time=order.arrival_time,
            wait_minutes=round(order.wait_minutes(now), 2),
            priority=round(order.priority, 2),
            priority_explanation=order.priority_explanation,
            skip_count=order.skip_count,
            status=order.status,
            assigned_barista_id=order.assigned_worker_id,
            started_at=order.started_at,
            completed_at=order.completed_at,
            timeout_notified=order.timeout_notified,
        )


class WorkerView(BaseModel):
    id: int
    name: str
    available: bool
    busy_until: datetime | None
    orders_completed: int
    total_work_minutes: int
    assigned_order_ids: list[int] = Field(default_factory=list)

    @classmethod
    def from_worker(cls, worker: Worker) -> "WorkerView":
        return cls(
            id=worker.id,
            name=worker.name,
            available=worker.available,
            busy_until=worker.busy_until,
            orders_completed=worker.orders_completed,
            total_work_minutes=worker.total_work_minutes,
            assigned_order_ids=list(worker.order_ids),
        )


class WorkerLoadView(BaseModel):
    minutes: int
    ratio: float


class StatsView(BaseModel):
    queue_size: int
    completed_count: int
    average_wait_minutes: float
    timeout_count: int
    barista_workloads: dict[str, WorkerLoadView]

    @classmethod
    def from_stats(cls, stats: DispatchStats) -> "StatsView":
        return cls(
            queue_size=stats.queue_size,
            completed_count=stats.completed_count,
            average_wait_minutes=stats.average_wait_minutes,
            timeout_count=stats.timeout_count,
            barista_workloads={
                name: WorkerLoadView(minutes=load.pending_minutes, ratio=load.ratio)
                for name, load in stats.worker_workloads.items()
            },
        )


class WorkerStatsView(BaseModel):
    id: int
    name: str
    orders_completed: int
    total_workload_minutes: int
    avg_time_per_order: float
    workload_ratio: float
    timeouts: int
    available: bool

    @classmethod
    def from_stats(cls, stats: WorkerStats) -> "WorkerStatsView":
        return cls(
            id=stats.id,
            name=stats.name,
            orders_completed=stats.orders_completed,
            total_workload_minutes=stats.pending_minutes,
            avg_time_per_order=stats.avg_minutes_per_order,
            workload_ratio=stats.workload_ratio,
            timeouts=stats.timeouts,
            available=stats.available,
        )


class TrialView(BaseModel):
    test_case: int
    total_orders: int
    served: int
    avg_wait_time: float
    timeouts: int
    abandoned: int
    barista_orders: list[int]

    @classmethod
    def from_result(cls, result: TrialResult) -> "TrialView":
        return cls(
            test_case=result.trial,
            total_orders=result.total_orders,
            served=result.served,
            avg_wait_time=result.avg_wait_minutes,
            timeouts=result.timeouts,
            abandoned=result.abandoned,
            barista_orders=list(result.worker_orders),
        )


class OkResponse(BaseModel):
    """Generic success response."""

    ok: bool = True
    message: str | None = None
    cleared: int | None = None
