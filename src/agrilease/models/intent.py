"""Discovery intent - a short-lived record of interest in a device."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from agrilease.models.enums import IntentStatus, OrderType


class DiscoveryIntent(BaseModel):
    intent_id: UUID
    device_id: UUID
    intent_type: Optional[OrderType] = None
    requested_hours: Optional[float] = None
    requested_acres: Optional[float] = None
    status: IntentStatus
    expires_at: datetime
    created_at: datetime
