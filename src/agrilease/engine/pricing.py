"""Pricing rule resolution and conflict detection."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.db.repositories import (
    DeviceRepository,
    PricingRuleRepository,
    ThresholdConfigRepository,
)
from agrilease.engine.errors import (
    DeviceNotFound,
    DuplicateDefaultRule,
    PricingRuleNotFound,
    ThresholdConfigNotFound,
    ValidationFailed,
)
from agrilease.models import (
    Device,
    PricingMetric,
    PricingRule,
    PricingRuleDraft,
    RuleStatus,
    ThresholdConfig,
)
from agrilease.utils.time import utc_today

logger = logging.getLogger(__name__)


@dataclass
class PricingRuleCreation:
    """A created rule and the time-specific rules it overlaps."""

    rule: PricingRule
    conflicts: list[PricingRule] = field(default_factory=list)


def estimate_price(
    rule: Optional[PricingRule],
    requested_hours: Optional[float],
    requested_acres: Optional[float],
) -> Optional[float]:
    """
    rate(metric) * quantity for whichever quantity was requested.

    Hours win when both are present. None when there is no rule, no
    quantity, or the rule has no rate for the metric.
    """
    if rule is None:
        return None
    if requested_hours is not None:
        metric, quantity = PricingMetric.PER_HOUR, requested_hours
    elif requested_acres is not None:
        metric, quantity = PricingMetric.PER_ACRE, requested_acres
    else:
        return None
    rate = rule.rate_for(metric)
    if rate is None:
        return None
    return round(rate * quantity, 2)


class PricingResolver:
    """Resolves the rate rule in force for a scope and date, and guards rule creation."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.rules = PricingRuleRepository(session)
        self.devices = DeviceRepository(session)
        self.thresholds = ThresholdConfigRepository(session)

    async def get_default_rule(self, device_type: str, pincode: str) -> Optional[PricingRule]:
        return await self.rules.get_default(device_type, pincode)

    async def get_time_specific_rules(
        self, device_type: str, pincode: str, on_date: date
    ) -> list[PricingRule]:
        return await self.rules.list_covering(device_type, pincode, on_date)

    async def has_default_rule(self, device_type: Optional[str], pincode: Optional[str]) -> bool:
        if not device_type or not pincode:
            return False
        return await self.rules.get_default(device_type, pincode) is not None

    async def resolve(
        self, device_type: str, pincode: str, on_date: Optional[date] = None
    ) -> Optional[PricingRule]:
        """First time-specific rule covering the date, else the default rule."""
        on_date = on_date or utc_today()
        time_specific = await self.rules.list_covering(device_type, pincode, on_date)
        if time_specific:
            return time_specific[0]
        return await self.rules.get_default(device_type, pincode)

    async def resolve_for_device(
        self, device: Device, on_date: Optional[date] = None
    ) -> Optional[PricingRule]:
        if not device.has_pricing_scope:
            logger.warning(f"Device {device.device_id} missing device type or pincode")
            return None
        return await self.resolve(device.device_type, device.pincode, on_date)

    async def get_active_pricing_for_device(
        self, device_id: UUID, on_date: Optional[date] = None
    ) -> Optional[PricingRule]:
        device = await self.devices.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)
        return await self.resolve_for_device(device, on_date)

    async def check_for_conflicts(self, candidate: PricingRuleDraft) -> list[PricingRule]:
        """
        Existing rules the candidate clashes with.

        A default candidate clashes with the scope's default rule. A
        time-specific candidate clashes with every ACTIVE time-specific rule
        whose window overlaps its own, bounds inclusive.
        """
        if candidate.is_default:
            existing = await self.rules.get_default(candidate.device_type, candidate.pincode)
            return [existing] if existing else []
        return await self.rules.list_overlapping(
            candidate.device_type,
            candidate.pincode,
            candidate.effective_from,
            candidate.effective_to,
        )

    async def create_rule(self, candidate: PricingRuleDraft) -> PricingRuleCreation:
        """
        Persist a rule.

        A second default rule for a scope fails before anything is written.
        Overlapping time-specific rules are reported and logged but the
        candidate is still created.
        """
        if not candidate.rules:
            raise ValidationFailed("A pricing rule needs at least one rate")
        if not candidate.is_default and candidate.effective_to < candidate.effective_from:
            raise ValidationFailed("effective_to must be on or after effective_from")

        conflicts = await self.check_for_conflicts(candidate)
        if candidate.is_default and conflicts:
            raise DuplicateDefaultRule(candidate.device_type, candidate.pincode)

        try:
            rule = await self.rules.create(
                device_type=candidate.device_type,
                pincode=candidate.pincode,
                rules=candidate.rules,
                effective_from=candidate.effective_from,
                effective_to=candidate.effective_to,
            )
        except IntegrityError as e:
            # Lost a race for the scope's default slot
            raise DuplicateDefaultRule(candidate.device_type, candidate.pincode) from e

        if conflicts:
            logger.warning(
                f"Pricing rule {rule.rule_id} for {rule.device_type}/{rule.pincode} overlaps "
                f"{len(conflicts)} time-specific rule(s): "
                + ", ".join(str(c.rule_id) for c in conflicts)
            )
        else:
            logger.info(f"Created pricing rule {rule.rule_id} for {rule.device_type}/{rule.pincode}")
        return PricingRuleCreation(rule=rule, conflicts=conflicts)

    async def get_rule(self, rule_id: UUID) -> PricingRule:
        rule = await self.rules.get(rule_id)
        if rule is None:
            raise PricingRuleNotFound(rule_id)
        return rule

    async def list_rules(
        self,
        device_type: Optional[str] = None,
        pincode: Optional[str] = None,
        status: Optional[RuleStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PricingRule]:
        return await self.rules.list(device_type, pincode, status, limit=limit, offset=offset)

    async def deactivate_rule(self, rule_id: UUID) -> PricingRule:
        await self.get_rule(rule_id)
        rule = await self.rules.deactivate(rule_id)
        logger.info(f"Deactivated pricing rule {rule_id}")
        return rule

    async def save_threshold(
        self, device_type: str, max_rental_hours: float, max_rental_acres: float
    ) -> ThresholdConfig:
        if max_rental_hours < 0 or max_rental_acres < 0:
            raise ValidationFailed("Threshold limits must not be negative")
        return await self.thresholds.upsert(device_type, max_rental_hours, max_rental_acres)

    async def get_threshold(self, device_type: str) -> ThresholdConfig:
        config = await self.thresholds.get(device_type)
        if config is None:
            raise ThresholdConfigNotFound(device_type)
        return config
