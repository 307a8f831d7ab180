"""Side effects staged by a unit of work until it commits."""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from agrilease.models.enums import (
    AuditAction,
    AuditEntityType,
    NotificationEvent,
    RecipientRole,
)


@dataclass(frozen=True)
class AuditRecord:
    entity_type: AuditEntityType
    entity_id: str
    action: AuditAction
    actor_id: Optional[str]
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class NotificationRecord:
    event: NotificationEvent
    recipient_role: RecipientRole
    payload: dict[str, Any] = field(default_factory=dict)


OutboundEvent = Union[AuditRecord, NotificationRecord]


class EventOutbox:
    """
    Collects audit and notification records for one unit of work.

    Nothing staged here leaves the process until the owning engine commits;
    a rollback discards the lot.
    """

    def __init__(self) -> None:
        self._pending: list[OutboundEvent] = []

    def audit(
        self,
        entity_type: AuditEntityType,
        entity_id: Any,
        action: AuditAction,
        actor_id: Optional[str],
        from_state: Any = None,
        to_state: Any = None,
        note: Optional[str] = None,
    ) -> None:
        self._pending.append(
            AuditRecord(
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action,
                actor_id=actor_id,
                from_state=_state_name(from_state),
                to_state=_state_name(to_state),
                note=note,
            )
        )

    def notify(
        self,
        event: NotificationEvent,
        recipient_role: RecipientRole,
        payload: dict[str, Any],
    ) -> None:
        self._pending.append(NotificationRecord(event, recipient_role, dict(payload)))

    @property
    def pending(self) -> tuple[OutboundEvent, ...]:
        return tuple(self._pending)

    def drain(self) -> list[OutboundEvent]:
        """Hand over everything staged and start empty."""
        events, self._pending = self._pending, []
        return events

    def discard(self) -> int:
        count = len(self._pending)
        self._pending = []
        return count


def _state_name(state: Any) -> Optional[str]:
    if state is None:
        return None
    return getattr(state, "value", str(state))
