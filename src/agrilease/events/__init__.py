"""Audit and notification side effects."""

from agrilease.events.dispatcher import EventDispatcher, get_event_dispatcher
from agrilease.events.outbox import (
    AuditRecord,
    EventOutbox,
    NotificationRecord,
    OutboundEvent,
)

__all__ = [
    "AuditRecord",
    "EventDispatcher",
    "EventOutbox",
    "NotificationRecord",
    "OutboundEvent",
    "get_event_dispatcher",
]
