"""Pricing rule and threshold models."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from agrilease.models.enums import PricingMetric, RuleStatus


class PricingRuleItem(BaseModel):
    """One rate within a rule."""

    metric: PricingMetric
    rate: float = Field(..., ge=0)


class PricingRuleDraft(BaseModel):
    """Candidate rule, before persistence."""

    device_type: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    rules: list[PricingRuleItem] = Field(default_factory=list)
    effective_from: date
    effective_to: Optional[date] = None

    @property
    def is_default(self) -> bool:
        return self.effective_to is None


class PricingRule(BaseModel):
    """Rate rule scoped to (device type, pincode) over a validity window."""

    rule_id: UUID
    device_type: str
    pincode: str
    rules: list[PricingRuleItem]
    effective_from: date
    effective_to: Optional[date] = None
    status: RuleStatus
    created_at: datetime

    @property
    def is_default(self) -> bool:
        return self.effective_to is None

    def rate_for(self, metric: PricingMetric) -> Optional[float]:
        for item in self.rules:
            if item.metric == metric:
                return item.rate
        return None


class ThresholdConfig(BaseModel):
    """Per device-type limits separating a rental from a lease."""

    device_type: str
    max_rental_hours: float = Field(..., ge=0)
    max_rental_acres: float = Field(..., ge=0)
    status: RuleStatus = RuleStatus.ACTIVE
    updated_at: Optional[datetime] = None
