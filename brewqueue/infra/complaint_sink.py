"""
Complaint sink abstraction for timeout complaints raised by the completion timer.

The dispatcher only builds ``Complaint`` records; persisting them is the job of
a sink.  Calls are best-effort: a failing sink is logged by the caller and never
rolls back the order's timeout flag.

Usage:
    sink = get_complaint_sink("memory")
    await sink.record(complaint)
"""
from __future__ import annotations

import abc
from threading import Lock

from brewqueue.core.dispatch.domain import Complaint
from brewqueue.infra.logging_config import get_logger

logger = get_logger(__name__)


class ComplaintSink(abc.ABC):
    """Abstract base class for complaint storage"""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Sink name for logging/metrics"""
        pass

    @abc.abstractmethod
    async def record(self, complaint: Complaint) -> None:
        """
        Persist a complaint.

        Raises on failure; the caller decides how to report it.
        """
        pass


class InMemoryComplaintSink(ComplaintSink):
    """Keeps complaints in process memory, newest last"""

    def __init__(self) -> None:
        self._complaints: list[Complaint] = []
        self._lock = Lock()

    @property
    def name(self) -> str:
        return "memory"

    async def record(self, complaint: Complaint) -> None:
        with self._lock:
            self._complaints.append(complaint)

    def list_complaints(self, worker_label: str | None = None) -> list[Complaint]:
        with self._lock:
            items = list(self._complaints)
        if worker_label:
            items = [c for c in items if c.worker_label == worker_label]
        return items


class LoggingComplaintSink(ComplaintSink):
    """Writes complaints to the application log"""

    @property
    def name(self) -> str:
        return "log"

    async def record(self, complaint: Complaint) -> None:
        logger.warning(
            f"Complaint recorded: against={complaint.worker_label}, "
            f"owner={complaint.owner_label}, message={complaint.message}"
        )


def get_complaint_sink(kind: str) -> ComplaintSink:
    """Build the configured sink"""
    if kind == "memory":
        return InMemoryComplaintSink()
    if kind == "log":
        return LoggingComplaintSink()
    raise ValueError(f"Unknown complaint sink: {kind}")
