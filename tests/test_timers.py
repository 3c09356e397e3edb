# tests/test_timers.py
"""Tests for the background recalculation loop and completion timer"""
import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from brewqueue.core.dispatch.timers import CompletionTimer, PeriodicTask, RecalculationLoop
from brewqueue.infra.complaint_sink import InMemoryComplaintSink
from brewqueue.infra.metrics import get_metrics_collector


def _starve_order(dispatcher, clock):
    """Leave order #2 pending for 10 minutes behind a busy barista."""
    dispatcher.submit("Mocha", 8)
    starved = dispatcher.submit("Mocha", 8, owner="dana")
    clock.advance(minutes=7.9)
    dispatcher.submit("Cappuccino", 3, loyalty_tier=5, is_regular_customer=True)
    clock.advance(seconds=6)
    dispatcher.run_completion_tick()
    clock.advance(minutes=2)
    return starved


class CountingTask(PeriodicTask):
    name = "counting"

    def __init__(self, interval, fail=False):
        super().__init__(interval)
        self.fail = fail
        self.calls = 0

    async def tick(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("tick exploded")


# ============================================================================
# PeriodicTask
# ============================================================================

class TestPeriodicTask:
    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            CountingTask(0)
        with pytest.raises(ValueError):
            CountingTask(-1.0)

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        task = CountingTask(0.01)
        await task.start()
        assert task.is_running

        await asyncio.sleep(0.05)
        await task.stop()

        assert not task.is_running
        assert task.calls >= 1
        assert task.tick_count == task.calls

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        task = CountingTask(0.01)
        await task.stop()
        assert not task.is_running

    @pytest.mark.asyncio
    async def test_loop_survives_tick_errors(self):
        task = CountingTask(0.01, fail=True)
        await task.start()
        await asyncio.sleep(0.05)

        assert task.is_running
        assert task.calls >= 2
        await task.stop()

        counters = get_metrics_collector().get_metrics()["counters"]
        assert counters["dispatch_loop_errors_total{loop=counting}"] >= 2


# ============================================================================
# RecalculationLoop
# ============================================================================

class TestRecalculationLoop:
    @pytest.mark.asyncio
    async def test_tick_recalculates(self):
        dispatcher = MagicMock()
        loop = RecalculationLoop(dispatcher, interval=30.0)
        await loop.tick()
        dispatcher.recalculate.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_tick_runs_off_event_loop_thread(self):
        threads = []
        dispatcher = MagicMock()
        dispatcher.recalculate.side_effect = lambda: threads.append(threading.get_ident())

        await RecalculationLoop(dispatcher).tick()

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_tick_force_assigns_overdue_order(self, dispatcher, clock):
        dispatcher.submit("Mocha", 8)
        dispatcher.submit("Cappuccino", 4)
        dispatcher.submit("Flat White", 6)
        waiting = dispatcher.submit("Mocha", 8)
        clock.advance(minutes=9.5)

        await RecalculationLoop(dispatcher).tick()

        assert dispatcher.get_order(waiting.id).assigned_worker_id == 2
        assert any(a.startswith("CRITICAL") for a in dispatcher.get_alerts())


# ============================================================================
# CompletionTimer
# ============================================================================

class TestCompletionTimer:
    @pytest.mark.asyncio
    async def test_tick_completes_finished_drink(self, dispatcher, clock):
        order = dispatcher.submit("Latte", 4)
        clock.advance(minutes=4)

        await CompletionTimer(dispatcher, InMemoryComplaintSink()).tick()

        assert dispatcher.get_order(order.id).completed_at == clock()
        assert dispatcher.get_worker(1).available is True

    @pytest.mark.asyncio
    async def test_timeout_complaint_goes_to_sink(self, solo_dispatcher, clock):
        sink = InMemoryComplaintSink()
        timer = CompletionTimer(solo_dispatcher, sink)
        starved = _starve_order(solo_dispatcher, clock)

        await timer.tick()
        clock.advance(seconds=1)
        await timer.tick()

        complaints = sink.list_complaints()
        assert len(complaints) == 1
        assert complaints[0].order_id == starved.id
        assert complaints[0].owner_label == "dana"
        assert sink.list_complaints(worker_label="System (Auto-Raised)") == complaints
        assert sink.list_complaints(worker_label="Solo") == []

    @pytest.mark.asyncio
    async def test_sink_failure_alerts_and_keeps_flag(self, solo_dispatcher, clock):
        sink = MagicMock()
        sink.name = "broken"
        sink.record = AsyncMock(side_effect=RuntimeError("disk full"))
        timer = CompletionTimer(solo_dispatcher, sink)
        starved = _starve_order(solo_dispatcher, clock)

        await timer.tick()

        assert solo_dispatcher.get_order(starved.id).timeout_notified is True
        assert (
            f"COMPLAINT-SINK: failed to record complaint for Order #{starved.id} (RuntimeError)"
            in solo_dispatcher.get_alerts()
        )

        # No retry: the flag is already set
        clock.advance(seconds=1)
        await timer.tick()
        assert sink.record.await_count == 1

    @pytest.mark.asyncio
    async def test_background_loop_runs_ticks(self):
        dispatcher = MagicMock()
        dispatcher.run_completion_tick.return_value = []
        timer = CompletionTimer(dispatcher, InMemoryComplaintSink(), interval=0.01)

        await timer.start()
        await asyncio.sleep(0.05)
        await timer.stop()

        assert dispatcher.run_completion_tick.call_count >= 1

    @pytest.mark.asyncio
    async def test_tick_runs_off_event_loop_thread(self):
        threads = []
        dispatcher = MagicMock()

        def completion_tick():
            threads.append(threading.get_ident())
            return []

        dispatcher.run_completion_tick.side_effect = completion_tick

        await CompletionTimer(dispatcher, InMemoryComplaintSink()).tick()

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()
