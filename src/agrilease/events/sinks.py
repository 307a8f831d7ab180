"""Delivery targets for audit and notification records."""

import logging
from typing import Any, Optional, Protocol

from agrilease.db import base as db_base
from agrilease.db.repositories import AuditEventRepository
from agrilease.events.messages import render_message
from agrilease.events.outbox import AuditRecord
from agrilease.integrations.sms_client import SmsGatewayClient, get_sms_client
from agrilease.models.enums import NotificationEvent, RecipientRole

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    async def log_event(self, record: AuditRecord) -> None: ...


class Notifier(Protocol):
    async def notify(
        self,
        event: NotificationEvent,
        recipient_role: RecipientRole,
        payload: dict[str, Any],
    ) -> None: ...


class DatabaseAuditSink:
    """Persists audit records in their own session, apart from the audited work."""

    async def log_event(self, record: AuditRecord) -> None:
        if not record.actor_id:
            logger.debug(
                f"Skipping audit of {record.entity_type.value} {record.entity_id}: no actor"
            )
            return

        async with db_base.get_session() as session:
            await AuditEventRepository(session).create(
                entity_type=record.entity_type,
                entity_id=record.entity_id,
                action=record.action,
                actor_id=record.actor_id,
                from_state=record.from_state,
                to_state=record.to_state,
                note=record.note,
            )


class SmsNotifier:
    """Sends notifications as SMS to the phone carried in the payload."""

    def __init__(self, client: Optional[SmsGatewayClient] = None):
        self._client = client

    @property
    def client(self) -> SmsGatewayClient:
        return self._client or get_sms_client()

    async def notify(
        self,
        event: NotificationEvent,
        recipient_role: RecipientRole,
        payload: dict[str, Any],
    ) -> None:
        message = render_message(event, recipient_role, payload)
        phone = payload.get("phone")
        if not phone:
            logger.info(
                f"No phone on record for {recipient_role.value} of {event.value}; "
                f"message not sent: {message}"
            )
            return
        await self.client.send(phone, message)
