"""Order model - a request to lease or rent a device."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from agrilease.models.enums import OrderStatus, OrderType
from agrilease.models.handler import Handler


class Order(BaseModel):
    """A LEASE (administrator-handled) or RENT (distributor-handled) request."""

    order_id: UUID
    order_type: OrderType
    status: OrderStatus
    device_id: UUID
    requested_by: str
    handler: Handler
    requester_phone: Optional[str] = None
    requested_hours: Optional[float] = None
    requested_acres: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    note: Optional[str] = None
    intent_id: Optional[UUID] = None
    lease_id: Optional[UUID] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime

    def is_terminal(self) -> bool:
        return self.status.is_terminal()


class OrderRequest(BaseModel):
    """Input for creating an order."""

    device_id: UUID
    requested_hours: Optional[float] = Field(None, ge=0)
    requested_acres: Optional[float] = Field(None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    note: Optional[str] = Field(None, max_length=2000)
    intent_id: Optional[UUID] = None
