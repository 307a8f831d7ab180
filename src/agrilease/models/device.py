"""Device model - a physical equipment unit."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from agrilease.models.enums import DeviceStatus


class GeoPoint(BaseModel):
    """WGS84 coordinate."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Device(BaseModel):
    """Equipment unit that can be leased to a distributor and rented onward."""

    device_id: UUID
    device_type: Optional[str]
    name: str
    pincode: Optional[str]
    location: Optional[GeoPoint] = None
    status: DeviceStatus
    current_lease_id: Optional[UUID] = None
    requires_operator: bool = False
    version: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def is_leased(self) -> bool:
        return self.current_lease_id is not None

    @property
    def has_pricing_scope(self) -> bool:
        """A pricing rule can only be resolved for a typed, located device."""
        return bool(self.device_type) and bool(self.pincode)
