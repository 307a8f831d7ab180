"""Outbound event queue delivering audit and notification records."""

import asyncio
import logging
from typing import Iterable, Optional

from agrilease.config import settings
from agrilease.events.outbox import AuditRecord, NotificationRecord, OutboundEvent
from agrilease.events.sinks import AuditSink, DatabaseAuditSink, Notifier, SmsNotifier
from agrilease.observability.metrics import metrics

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Best-effort delivery of committed side effects.

    Records are queued by publish() and delivered by a background worker.
    A delivery failure is logged and counted, never retried and never
    raised back to whoever published the record.
    """

    def __init__(
        self,
        audit_sink: Optional[AuditSink] = None,
        notifier: Optional[Notifier] = None,
        max_queue_size: Optional[int] = None,
    ):
        self.audit_sink = audit_sink or DatabaseAuditSink()
        self.notifier = notifier or SmsNotifier()
        self._queue: asyncio.Queue[OutboundEvent] = asyncio.Queue(
            maxsize=max_queue_size or settings.event_queue_size
        )
        self._worker: Optional[asyncio.Task] = None

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    def publish(self, events: Iterable[OutboundEvent]) -> int:
        """Queue records without waiting; returns how many were accepted."""
        accepted = 0
        for event in events:
            try:
                self._queue.put_nowait(event)
            except asyncio.QueueFull:
                metrics.inc_counter("events.dropped")
                logger.error(f"Event queue full, dropping {_describe(event)}")
                continue
            accepted += 1
        if accepted:
            metrics.inc_counter("events.published", accepted)
        return accepted

    async def deliver(self, event: OutboundEvent) -> bool:
        """Deliver one record; False if its sink failed."""
        try:
            if isinstance(event, AuditRecord):
                await self.audit_sink.log_event(event)
            else:
                await self.notifier.notify(event.event, event.recipient_role, event.payload)
        except Exception:
            metrics.inc_counter("events.failed")
            logger.error(f"Failed to deliver {_describe(event)}", exc_info=True)
            return False
        metrics.inc_counter("events.delivered")
        return True

    async def drain(self) -> int:
        """Deliver everything currently queued; returns the number processed."""
        processed = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return processed
            try:
                await self.deliver(event)
            finally:
                self._queue.task_done()
            processed += 1

    async def _run(self) -> None:
        logger.info("Event dispatcher started")
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self, timeout: float = 10.0) -> None:
        """Let the worker finish queued records, then stop it."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Event dispatcher stopping with {self._queue.qsize()} undelivered record(s)"
            )
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Event dispatcher stopped")


def _describe(event: OutboundEvent) -> str:
    if isinstance(event, NotificationRecord):
        return f"notification {event.event.value} to {event.recipient_role.value}"
    return f"audit {event.action.value} on {event.entity_type.value} {event.entity_id}"


_dispatcher: Optional[EventDispatcher] = None


def get_event_dispatcher() -> EventDispatcher:
    """Get or create the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher()
    return _dispatcher
