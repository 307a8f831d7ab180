"""Audit event model."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from agrilease.models.enums import AuditAction, AuditEntityType


class AuditEvent(BaseModel):
    """Persisted record of a state change."""

    event_id: UUID
    entity_type: AuditEntityType
    entity_id: str
    action: AuditAction
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    actor_id: str
    note: Optional[str] = None
    created_at: datetime
