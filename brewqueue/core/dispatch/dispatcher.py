"""
In-memory order dispatcher.

The dispatcher is the single owner of dispatch state:
- an arena of every order ever submitted, keyed by id
- the pending queue (ids in insertion order; priority order is derived)
- the fixed barista pool (baristas hold order ids, never order objects)
- the completed list and the operator alert log

Every mutating sequence and every snapshot query runs under one re-entrant
lock.  Callers (HTTP threadpool, recalculation loop, completion timer) get
copies back, never live objects.  Nothing in here performs I/O while the
lock is held: timeout complaints are returned to the caller, who hands them
to the complaint sink after the lock is released.
"""
from __future__ import annotations

import copy
import itertools
from dataclasses import replace
from datetime import datetime, timedelta
from threading import RLock
from typing import Callable, Optional, Sequence

from brewqueue.core.dispatch.balancer import (
    WorkerLoad,
    average_pending_minutes,
    select_worker,
    workload_ratio,
)
from brewqueue.core.dispatch.domain import (
    Complaint,
    DispatchStats,
    Order,
    OrderStatus,
    Worker,
    WorkerLoadStat,
    WorkerStats,
    clamp_loyalty_tier,
    clamp_prep_time,
    utcnow,
)
from brewqueue.core.dispatch.priority import (
    CRITICAL_THRESHOLD_MINUTES,
    EMERGENCY_THRESHOLD_MINUTES,
    FAIRNESS_SKIP_THRESHOLD,
    MAX_WAIT_TIME_MINUTES,
    score,
)
from brewqueue.infra.logging_config import LogContext, get_logger
from brewqueue.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

DEFAULT_WORKER_NAMES = ("Alice", "Bob", "Charlie")
UNASSIGNED_LABEL = "System (Auto-Raised)"
ANONYMOUS_OWNER = "anonymous"


class Dispatcher:
    """
    Usage:
        dispatcher = Dispatcher(settings.worker_names)
        order = dispatcher.submit("Latte", 4, loyalty_tier=3, is_regular_customer=True)
        dispatcher.recalculate()            # every 30s
        dispatcher.run_completion_tick()    # every 1s
    """

    def __init__(
        self,
        worker_names: Sequence[str] = DEFAULT_WORKER_NAMES,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not worker_names:
            raise ValueError("Dispatcher needs at least one barista")

        self._clock = clock
        self._lock = RLock()
        self._ids = itertools.count(1)

        self._orders: dict[int, Order] = {}
        self._pending: list[int] = []
        self._completed: list[int] = []
        self._alerts: list[str] = []
        self._workers: dict[int, Worker] = {
            worker_id: Worker(id=worker_id, name=name)
            for worker_id, name in enumerate(worker_names, start=1)
        }

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Submission & assignment
    # ------------------------------------------------------------------

    def submit(
        self,
        drink_name: str,
        prep_time_minutes: int,
        loyalty_tier: int = 1,
        is_regular_customer: bool = False,
        owner: Optional[str] = None,
    ) -> Order:
        """Score a new order, queue it and try to hand it to a barista."""
        with self._lock:
            now = self._clock()
            order = Order(
                id=next(self._ids),
                drink_name=drink_name,
                prep_time_minutes=clamp_prep_time(prep_time_minutes),
                loyalty_tier=clamp_loyalty_tier(loyalty_tier),
                is_regular_customer=is_regular_customer,
                arrival_time=now,
                owner=owner or None,
            )
            self._orders[order.id] = order
            self._rescore(order, now)
            self._pending.append(order.id)

            DispatchMetrics.order_submitted()
            LogContext(logger, order_id=order.id).info(
                f"Order submitted: drink={order.drink_name}, prep={order.prep_time_minutes}m, "
                f"tier={order.loyalty_tier}, regular={order.is_regular_customer}, "
                f"priority={order.priority:.1f}"
            )

            self._try_assign(now)
            return copy.copy(order)

    def try_assign(self) -> int:
        """Drain the queue into available baristas. Returns how many orders moved."""
        with self._lock:
            return self._try_assign(self._clock())

    def assign_next_to_worker(self, worker_id: int) -> Optional[Order]:
        """Give the single highest-priority pending order to one barista."""
        with self._lock:
            worker = self._workers.get(worker_id)
            if worker is None:
                return None
            order = self._assign_next_to_worker(worker, self._clock())
            return copy.copy(order) if order is not None else None

    def complete_order(self, worker_id: int) -> Optional[Order]:
        """
        Manually finish a barista's current order.

        Returns None if the barista does not exist or has nothing in progress.
        """
        with self._lock:
            worker = self._workers.get(worker_id)
            if worker is None:
                return None

            now = self._clock()
            completed = self._complete_current(worker, now)
            if completed is None:
                return None

            logger.info(f"Order #{completed.id} completed manually by {worker.name}")
            self._try_assign(now)
            return copy.copy(completed)

    # ------------------------------------------------------------------
    # Periodic sweeps
    # ------------------------------------------------------------------

    def recalculate(self) -> None:
        """
        Re-score every pending order and escalate the overdue ones.

        - wait >= 9 min: force-assign to the barista who frees up soonest
        - wait >= 8 min: warning alert only
        """
        with self._lock:
            now = self._clock()

            # Arrival order, so earlier critical orders are escalated first
            for order in self._pending_orders():
                self._rescore(order, now)
                wait = order.wait_minutes(now)

                if wait >= CRITICAL_THRESHOLD_MINUTES:
                    worker = self._soonest_free_worker(now)
                    self._assign(order, worker, now, forced=True)
                    self._alert(
                        f"CRITICAL: Order #{order.id} ({wait:.1f} min wait) force-assigned! Manager alerted."
                    )
                elif wait >= EMERGENCY_THRESHOLD_MINUTES:
                    self._alert(
                        f"WARNING: Order #{order.id} approaching timeout ({wait:.1f} min wait)"
                    )

            self._try_assign(now)

    def run_completion_tick(self) -> list[Complaint]:
        """
        One completion-timer tick:
        1. finish orders whose prep time has elapsed and refill those baristas
        2. flag pending orders waiting >= 10 min (once per order)
        3. make sure no barista idles while the queue is non-empty

        Returns the complaints raised in step 2; the caller records them.
        """
        with self._lock:
            now = self._clock()

            for worker in self._workers.values():
                current = self._current_order(worker)
                if current is not None and current.is_prep_elapsed(now):
                    self._complete_current(worker, now)
                    if worker.available:
                        self._assign_next_to_worker(worker, now)

            complaints = []
            for order in self._pending_orders():
                if order.timeout_notified:
                    continue
                if order.wait_minutes(now) >= MAX_WAIT_TIME_MINUTES:
                    complaints.append(self._raise_timeout(order, now))

            for worker in self._workers.values():
                if worker.available and self._pending:
                    self._assign_next_to_worker(worker, now)

            return complaints

    def add_alert(self, message: str) -> None:
        with self._lock:
            self._alert(message)

    # ------------------------------------------------------------------
    # Queries (snapshots)
    # ------------------------------------------------------------------

    def get_queue(self, owner: Optional[str] = None) -> list[Order]:
        """Pending orders, highest priority first."""
        with self._lock:
            return [
                copy.copy(order)
                for order in self._sorted_pending()
                if not owner or order.owner == owner
            ]

    def get_order(self, order_id: int) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return copy.copy(order) if order is not None else None

    def get_workers(self) -> list[Worker]:
        with self._lock:
            return [self._snapshot_worker(w) for w in self._workers.values()]

    def get_worker(self, worker_id: int) -> Optional[Worker]:
        with self._lock:
            worker = self._workers.get(worker_id)
            return self._snapshot_worker(worker) if worker is not None else None

    def get_stats(self, owner: Optional[str] = None) -> DispatchStats:
        with self._lock:
            now = self._clock()
            queue = [o for o in self._pending_orders() if not owner or o.owner == owner]
            completed = [
                self._orders[i] for i in self._completed
                if not owner or self._orders[i].owner == owner
            ]

            waits = [o.wait_minutes(now) for o in completed]
            average_wait = round(sum(waits) / len(waits), 1) if waits else 0.0
            timeouts = sum(1 for w in waits if w > MAX_WAIT_TIME_MINUTES)

            loads = self._loads()
            average = average_pending_minutes(loads)
            workloads = {
                self._workers[load.worker_id].name: WorkerLoadStat(
                    name=self._workers[load.worker_id].name,
                    pending_minutes=load.pending_minutes,
                    ratio=round(workload_ratio(load.pending_minutes, average), 2),
                )
                for load in loads
            }

            return DispatchStats(
                queue_size=len(queue),
                completed_count=len(completed),
                average_wait_minutes=average_wait,
                timeout_count=timeouts,
                worker_workloads=workloads,
            )

    def get_worker_stats(self) -> list[WorkerStats]:
        with self._lock:
            loads = {load.worker_id: load for load in self._loads()}
            average = average_pending_minutes(list(loads.values()))

            stats = []
            for worker in self._workers.values():
                pending = loads[worker.id].pending_minutes
                per_order = (
                    worker.total_work_minutes / worker.orders_completed
                    if worker.orders_completed else 0.0
                )
                stats.append(WorkerStats(
                    id=worker.id,
                    name=worker.name,
                    orders_completed=worker.orders_completed,
                    pending_minutes=pending,
                    avg_minutes_per_order=round(per_order, 1),
                    workload_ratio=round(workload_ratio(pending, average), 2),
                    timeouts=worker.late_completions,
                    available=worker.available,
                ))
            return stats

    def get_alerts(self) -> list[str]:
        with self._lock:
            return list(self._alerts)

    def clear_alerts(self) -> int:
        with self._lock:
            cleared = len(self._alerts)
            self._alerts.clear()
            return cleared

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------

    def _try_assign(self, now: datetime) -> int:
        assigned = 0
        for order in self._sorted_pending():
            worker_id = select_worker(order, self._loads())
            if worker_id is None:
                break
            self._assign(order, self._workers[worker_id], now)
            assigned += 1
        return assigned

    def _assign_next_to_worker(self, worker: Worker, now: datetime) -> Optional[Order]:
        if not worker.available or not self._pending:
            return None
        order = self._sorted_pending()[0]
        self._assign(order, worker, now)
        return order

    def _assign(self, order: Order, worker: Worker, now: datetime, *, forced: bool = False) -> None:
        self._pending.remove(order.id)
        self._hand_to_worker(worker, order, now)
        self._update_skip_counts(order)

        if forced:
            DispatchMetrics.order_force_assigned(worker.name)
        else:
            DispatchMetrics.order_assigned(worker.name)
        LogContext(logger, order_id=order.id, worker_id=worker.id).info(
            f"Order #{order.id} {'force-' if forced else ''}assigned to {worker.name} "
            f"(priority={order.priority:.1f}, status={order.status.value})"
        )

    def _hand_to_worker(self, worker: Worker, order: Order, now: datetime) -> None:
        order.transition_to(OrderStatus.ASSIGNED)
        order.assigned_worker_id = worker.id
        worker.order_ids.append(order.id)
        if worker.available:
            self._start_next(worker, now)

    def _start_next(self, worker: Worker, now: datetime) -> None:
        for order_id in worker.order_ids:
            order = self._orders[order_id]
            if order.status == OrderStatus.ASSIGNED:
                order.transition_to(OrderStatus.IN_PROGRESS)
                order.started_at = now
                worker.available = False
                worker.busy_until = now + timedelta(minutes=order.prep_time_minutes)
                return
        worker.available = True

    def _complete_current(self, worker: Worker, now: datetime) -> Optional[Order]:
        current = self._current_order(worker)
        if current is None:
            return None

        current.transition_to(OrderStatus.COMPLETED)
        current.completed_at = now
        worker.orders_completed += 1
        worker.total_work_minutes += current.prep_time_minutes
        if current.wait_minutes(now) > MAX_WAIT_TIME_MINUTES:
            worker.late_completions += 1
        self._completed.append(current.id)
        DispatchMetrics.order_completed(worker.name, current.wait_minutes(now))

        worker.available = True
        self._start_next(worker, now)
        return current

    def _current_order(self, worker: Worker) -> Optional[Order]:
        for order_id in worker.order_ids:
            order = self._orders[order_id]
            if order.status == OrderStatus.IN_PROGRESS:
                return order
        return None

    def _update_skip_counts(self, assigned: Order) -> None:
        """Every pending order that arrived before ``assigned`` was just skipped."""
        for order in self._pending_orders():
            if order.arrival_time < assigned.arrival_time:
                order.skip_count += 1
                if order.skip_count == FAIRNESS_SKIP_THRESHOLD + 1:
                    DispatchMetrics.fairness_alert()
                    self._alert(
                        f"FAIRNESS: Order #{order.id} has been skipped {order.skip_count} times. "
                        f"Priority boosted."
                    )

    def _raise_timeout(self, order: Order, now: datetime) -> Complaint:
        # Flag first: at most one complaint per order even if the sink fails
        order.timeout_notified = True
        wait = order.wait_minutes(now)

        if order.assigned_worker_id is not None:
            worker_label = self._workers[order.assigned_worker_id].name
        else:
            worker_label = UNASSIGNED_LABEL

        complaint = Complaint(
            worker_label=worker_label,
            owner_label=order.owner or ANONYMOUS_OWNER,
            message=(
                f"Auto-Raised (Timeout): Order #{order.id} ({order.drink_name}) "
                f"waited {round(wait, 1)} minutes."
            ),
            order_id=order.id,
            created_at=now,
        )

        DispatchMetrics.timeout_raised()
        self._alert(
            f"AUTO-COMPLAINT: Order #{order.id} exceeded 10 min wait ({wait:.1f} min). "
            f"Complaint filed against {worker_label}."
        )
        return complaint

    def _rescore(self, order: Order, now: datetime) -> None:
        breakdown = score(order, now)
        order.priority = breakdown.priority
        order.priority_explanation = breakdown.explanation

    def _soonest_free_worker(self, now: datetime) -> Worker:
        # Never-busy baristas sort first, then by busy_until, then pool order
        return min(
            self._workers.values(),
            key=lambda w: (w.busy_until is not None, w.busy_until or now, w.id),
        )

    def _pending_orders(self) -> list[Order]:
        return [self._orders[i] for i in self._pending]

    def _sorted_pending(self) -> list[Order]:
        return sorted(self._pending_orders(), key=lambda o: (-o.priority, o.id))

    def _pending_minutes(self, worker: Worker) -> int:
        return sum(
            self._orders[i].prep_time_minutes
            for i in worker.order_ids
            if self._orders[i].status != OrderStatus.COMPLETED
        )

    def _loads(self) -> list[WorkerLoad]:
        return [
            WorkerLoad(
                worker_id=worker.id,
                available=worker.available,
                pending_minutes=self._pending_minutes(worker),
            )
            for worker in self._workers.values()
        ]

    def _alert(self, message: str) -> None:
        self._alerts.append(message)
        logger.warning(f"Alert: {message}")

    @staticmethod
    def _snapshot_worker(worker: Worker) -> Worker:
        return replace(worker, order_ids=list(worker.order_ids))
