"""Bounded in-process queue for post-commit booking notifications.

Producers call ``submit`` after their transaction has committed. One worker
task drains the queue; a failing event is logged and counted, never retried
and never reported back to the producer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import Any

from tutorbook.core.config import get_settings
from tutorbook.core.database import SessionLocal
from tutorbook.core.enums import CancelledByEnum
from tutorbook.core.metrics import NOTIFICATIONS_TOTAL
from tutorbook.modules.notifications.delivery import (
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    BookingEvent,
    NotificationWriter,
)
from tutorbook.shared.utils import display_name

logger = logging.getLogger(__name__)

EventHandler = Callable[[BookingEvent], Awaitable[Any]]


class NotificationDispatcher:
    """Single-consumer work queue with drop-on-full back-pressure."""

    def __init__(self, handler: EventHandler, *, maxsize: int = 1000, drain_timeout: float = 10.0) -> None:
        self.handler = handler
        self.drain_timeout = drain_timeout
        self.queue: asyncio.Queue[BookingEvent] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def submit(self, event: BookingEvent) -> bool:
        """Enqueue without waiting. Returns False when the event was dropped."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            NOTIFICATIONS_TOTAL.labels(outcome="dropped").inc()
            logger.warning(
                "Notification queue full, dropping %s event for slot %s",
                event.event_type,
                event.slot_id,
            )
            return False
        NOTIFICATIONS_TOTAL.labels(outcome="queued").inc()
        return True

    async def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
        logger.info("Notification dispatcher started")

    async def stop(self) -> None:
        """Deliver what is already queued within ``drain_timeout``, then stop the worker."""
        if not self.is_running:
            return
        try:
            await asyncio.wait_for(self.queue.join(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Notification queue not drained within %.1fs, abandoning %d event(s)",
                self.drain_timeout,
                self.queue.qsize() + 1,
            )
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        abandoned = 0
        while not self.queue.empty():
            event = self.queue.get_nowait()
            self.queue.task_done()
            abandoned += 1
            logger.warning("Undelivered %s notification for slot %s", event.event_type, event.slot_id)
        if abandoned:
            NOTIFICATIONS_TOTAL.labels(outcome="abandoned").inc(abandoned)
        logger.info("Notification dispatcher stopped")

    async def process(self, event: BookingEvent) -> bool:
        try:
            await self.handler(event)
        except Exception:
            NOTIFICATIONS_TOTAL.labels(outcome="failed").inc()
            logger.exception(
                "Failed to deliver %s notification for slot %s",
                event.event_type,
                event.slot_id,
            )
            return False
        NOTIFICATIONS_TOTAL.labels(outcome="sent").inc()
        return True

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.process(event)
            finally:
                self.queue.task_done()


class BookingNotifier:
    """Build booking events from domain objects and hand them to the dispatcher."""

    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self.dispatcher = dispatcher

    def notify_booking_confirmed(self, slot, professor, student) -> bool:
        return self.dispatcher.submit(self._event(BOOKING_CONFIRMED, slot, professor, student))

    def notify_booking_cancelled(
        self,
        slot,
        professor,
        student,
        reason: str | None,
        cancelled_by: CancelledByEnum,
    ) -> bool:
        event = self._event(
            BOOKING_CANCELLED,
            slot,
            professor,
            student,
            reason=reason,
            cancelled_by=cancelled_by,
        )
        return self.dispatcher.submit(event)

    @staticmethod
    def _event(event_type: str, slot, professor, student, **extra) -> BookingEvent:
        return BookingEvent(
            event_type=event_type,
            slot_id=slot.id,
            slot_title=slot.title,
            start_at=slot.start_at,
            professor_id=professor.id,
            professor_name=display_name(professor.first_name, professor.last_name),
            student_id=student.id,
            student_name=display_name(student.first_name, student.last_name),
            **extra,
        )


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher writing notifications through the main session factory."""
    settings = get_settings()
    return NotificationDispatcher(
        NotificationWriter(SessionLocal),
        maxsize=settings.notification_queue_size,
        drain_timeout=settings.notification_drain_timeout_seconds,
    )


def get_booking_notifier() -> BookingNotifier:
    """Dependency provider for the booking notifier."""
    return BookingNotifier(get_notification_dispatcher())
