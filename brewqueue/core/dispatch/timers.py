"""
In-process asyncio timers that keep the dispatcher moving.

- ``RecalculationLoop`` re-scores the queue and escalates overdue orders
- ``CompletionTimer`` auto-completes finished drinks, refills idle baristas
  and records timeout complaints

Both run as background tasks started from the application lifespan.  A tick
either finishes its sweep or the task is cancelled between awaits on
shutdown.
"""
from __future__ import annotations

import asyncio

from brewqueue.core.dispatch.dispatcher import Dispatcher
from brewqueue.core.dispatch.domain import Complaint
from brewqueue.infra.complaint_sink import ComplaintSink
from brewqueue.infra.logging_config import LogContext, get_logger
from brewqueue.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


class PeriodicTask:
    """
    Runs ``tick()`` every ``interval`` seconds until stopped.

    Usage:
        timer = CompletionTimer(dispatcher, sink, interval=1.0)
        await timer.start()
        ...
        await timer.stop()
    """

    name = "periodic"

    def __init__(self, interval: float):
        if interval <= 0:
            raise ValueError(f"{self.name}: interval must be positive, got {interval}")
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._running = False
        self._tick_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    async def tick(self) -> None:
        raise NotImplementedError

    async def start(self) -> None:
        """Start the loop as an asyncio task."""
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)
        self._task.add_done_callback(self._on_task_done)
        logger.info(f"{self.name} started: interval={self._interval}s")

    async def stop(self) -> None:
        """Stop the loop and wait for the task to wind down."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info(f"{self.name} stopped after {self._tick_count} ticks")

    async def _loop(self) -> None:
        while self._running:
            try:
                self._tick_count += 1
                with DispatchMetrics.track_tick(self.name):
                    await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"{self.name} tick failed: {exc}", exc_info=True)
                DispatchMetrics.loop_error(self.name)

            await asyncio.sleep(self._interval)

    def _on_task_done(self, task: asyncio.Task) -> None:
        """Log unexpected loop death."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"{self.name} task died unexpectedly: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )


class RecalculationLoop(PeriodicTask):
    """Re-score pending orders, escalate critical ones, then drain the queue."""

    name = "recalculation_loop"

    def __init__(self, dispatcher: Dispatcher, *, interval: float = 30.0):
        super().__init__(interval)
        self._dispatcher = dispatcher

    async def tick(self) -> None:
        # Blocks on the dispatcher lock, so it runs in the default executor
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._dispatcher.recalculate)


class CompletionTimer(PeriodicTask):
    """Fast tick: auto-complete, timeout complaints, idle-barista sweep."""

    name = "completion_timer"

    def __init__(self, dispatcher: Dispatcher, sink: ComplaintSink, *, interval: float = 1.0):
        super().__init__(interval)
        self._dispatcher = dispatcher
        self._sink = sink

    async def tick(self) -> None:
        loop = asyncio.get_running_loop()
        complaints = await loop.run_in_executor(None, self._dispatcher.run_completion_tick)

        # Dispatcher lock is released here; sink I/O never blocks dispatch
        for complaint in complaints:
            await self._record(complaint)

    async def _record(self, complaint: Complaint) -> None:
        log_ctx = LogContext(logger, order_id=complaint.order_id)
        try:
            await self._sink.record(complaint)
            log_ctx.info(f"Timeout complaint recorded via {self._sink.name}")
        except Exception as exc:
            log_ctx.error(
                f"Complaint sink {self._sink.name} failed: {exc.__class__.__name__}: {exc}",
                exc_info=True,
            )
            DispatchMetrics.complaint_sink_failed(self._sink.name)
            message = (
                f"COMPLAINT-SINK: failed to record complaint for Order #{complaint.order_id} "
                f"({exc.__class__.__name__})"
            )
            await asyncio.get_running_loop().run_in_executor(None, self._dispatcher.add_alert, message)
