"""Lease model - equipment control granted to a distributor."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from agrilease.models.enums import CommitmentType, DocumentType, LeaseStatus, OperatorRole


class Commitment(BaseModel):
    """Usage the distributor committed to."""

    type: CommitmentType = CommitmentType.HOURS
    value: float = 0.0


class OperatorAssignment(BaseModel):
    """Operator attached to a lease."""

    operator_id: str
    role: OperatorRole
    assigned_at: Optional[datetime] = None


class Attachment(BaseModel):
    """Uploaded document attached to a lease."""

    url: str
    type: DocumentType = DocumentType.OTHER
    uploaded_at: datetime


class Lease(BaseModel):
    """Represents real equipment control, created from one accepted LEASE order."""

    lease_id: UUID
    device_id: UUID
    order_id: UUID
    distributor_id: str
    status: LeaseStatus
    commitment: Commitment
    estimated_price: Optional[float] = None
    deposit_amount: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    operators: list[OperatorAssignment] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)
    signed_by_admin_id: Optional[str] = None
    notes: Optional[str] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def primary_operator(self) -> Optional[OperatorAssignment]:
        for assignment in self.operators:
            if assignment.role == OperatorRole.PRIMARY:
                return assignment
        return None
