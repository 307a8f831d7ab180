"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import Form
from pydantic import BaseModel, Field

from agrilease.engine.devices import TimeWindowRates
from agrilease.models import (
    DeviceStatus,
    GeoPoint,
    LeaseStatus,
    OnboardingAction,
    OrderStatus,
    OrderType,
    PricingRule,
    PricingRuleItem,
)


# ============================================================================
# Shared schemas
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    environment: str


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Body of every engine error response."""

    error: ErrorBody


# ============================================================================
# Orders
# ============================================================================


class UpdateOrderStatusRequest(BaseModel):
    """Move an order to a new status."""

    status: OrderStatus
    note: Optional[str] = Field(None, max_length=2000, description="Kept from before when absent")


class OrderNoteRequest(BaseModel):
    """Cancel or reject an order, optionally with a note."""

    note: Optional[str] = Field(None, max_length=2000)


class AllowedTransitionsResponse(BaseModel):
    order_id: UUID
    current_status: OrderStatus
    allowed_next_states: list[OrderStatus]


# ============================================================================
# Leases
# ============================================================================


class CreateLeaseForm(BaseModel):
    """Multipart fields accompanying lease attachments."""

    order_id: UUID
    deposit_amount: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    operators: Optional[str] = Field(None, description="JSON list of {operator_id, role}")
    attachment_types: Optional[str] = Field(
        None, description="Comma-separated document types, parallel to the files"
    )

    @classmethod
    def as_form(
        cls,
        order_id: UUID = Form(...),
        deposit_amount: Optional[float] = Form(None),
        notes: Optional[str] = Form(None),
        operators: Optional[str] = Form(None),
        attachment_types: Optional[str] = Form(None),
    ) -> "CreateLeaseForm":
        return cls(
            order_id=order_id,
            deposit_amount=deposit_amount,
            notes=notes,
            operators=operators,
            attachment_types=attachment_types,
        )


class EndLeaseRequest(BaseModel):
    status: LeaseStatus = Field(..., description="completed or terminated")
    note: Optional[str] = Field(None, max_length=2000)


# ============================================================================
# Discovery
# ============================================================================


class CreateIntentRequest(BaseModel):
    device_id: UUID
    intent_type: Optional[OrderType] = None
    requested_hours: Optional[float] = Field(None, ge=0)
    requested_acres: Optional[float] = Field(None, ge=0)


# ============================================================================
# Device administration
# ============================================================================


class RegisterDeviceRequest(BaseModel):
    name: str = Field(..., min_length=1)
    device_type: Optional[str] = None
    pincode: Optional[str] = None
    location: Optional[GeoPoint] = None
    requires_operator: bool = False


class ConfigurePricingRequest(BaseModel):
    """Default rates for the device's scope plus optional dated windows."""

    default_rules: list[PricingRuleItem] = Field(..., min_length=1)
    time_specific_rules: list[TimeWindowRates] = Field(default_factory=list)


class FinalizeDeviceRequest(BaseModel):
    action: OnboardingAction


class ChangeDeviceStatusRequest(BaseModel):
    status: DeviceStatus


# ============================================================================
# Pricing rules and thresholds
# ============================================================================


class CreatePricingRuleResponse(BaseModel):
    rule: PricingRule
    conflicts: list[PricingRule] = Field(default_factory=list)


class ConflictsResponse(BaseModel):
    conflicts: list[PricingRule]


class ActivePricingResponse(BaseModel):
    device_id: UUID
    rule: Optional[PricingRule] = None
    estimated_price: Optional[float] = None


class ThresholdRequest(BaseModel):
    max_rental_hours: float = Field(..., ge=0)
    max_rental_acres: float = Field(..., ge=0)


# ============================================================================
# Distributor profiles
# ============================================================================


class CreateDistributorProfileRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    pincode: Optional[str] = None


# ============================================================================
# Metrics
# ============================================================================


class MetricsResponse(BaseModel):
    generated_at: datetime
    metrics: dict[str, Any]
    sms_circuit: Optional[dict[str, Any]] = None
