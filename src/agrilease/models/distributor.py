"""Distributor profile - links a distributor id to its owning user."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class DistributorProfile(BaseModel):
    distributor_id: str
    user_id: str
    name: str
    pincode: Optional[str] = None
    created_at: datetime
