"""Device onboarding, status management and distributor profiles."""

import logging
from datetime import date
from typing import Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.db.repositories import (
    AuditEventRepository,
    DeviceRepository,
    DistributorProfileRepository,
)
from agrilease.engine.errors import (
    AuthenticationRequired,
    ConcurrentModification,
    DeviceNotFound,
    DeviceRetired,
    DistributorProfileNotFound,
    ForbiddenError,
    PreconditionFailed,
    PricingRuleRequired,
    ValidationFailed,
)
from agrilease.engine.pricing import PricingResolver, PricingRuleCreation
from agrilease.events.outbox import EventOutbox
from agrilease.models import (
    AuditAction,
    AuditEntityType,
    AuditEvent,
    Device,
    DeviceStatus,
    DistributorProfile,
    GeoPoint,
    OnboardingAction,
    PricingRule,
    PricingRuleDraft,
    PricingRuleItem,
    RequestContext,
    ThresholdConfig,
    UserRole,
)
from agrilease.utils.time import utc_today

logger = logging.getLogger(__name__)


class TimeWindowRates(BaseModel):
    """Rates that apply only between two dates, bounds inclusive."""

    rules: list[PricingRuleItem] = Field(default_factory=list)
    effective_from: date
    effective_to: date


class PricingSetup(BaseModel):
    """Rules written for a device's scope during onboarding."""

    default_rule: PricingRule
    time_specific_rules: list[PricingRule] = Field(default_factory=list)
    conflicts: list[PricingRule] = Field(default_factory=list)


class PricingStatus(BaseModel):
    device_id: UUID
    default_rule: Optional[PricingRule] = None
    time_specific_rules: list[PricingRule] = Field(default_factory=list)
    requires_pricing_rule: bool


def _require_admin(ctx: RequestContext, action: str) -> None:
    if not ctx.is_authenticated:
        raise AuthenticationRequired()
    if not ctx.is_admin:
        raise ForbiddenError(f"Only administrators can {action}")


class DeviceOnboardingService:
    """
    Administrator workflow that brings a device from DRAFT to LIVE.

    A device is registered as DRAFT, priced for its (type, pincode) scope,
    then finalized as ONBOARDED (hidden) or LIVE (discoverable). Going LIVE
    always needs an active default pricing rule for the scope.
    """

    def __init__(
        self,
        session: AsyncSession,
        outbox: EventOutbox,
        pricing: Optional[PricingResolver] = None,
    ):
        self.session = session
        self.outbox = outbox
        self.devices = DeviceRepository(session)
        self.profiles = DistributorProfileRepository(session)
        self.audit_events = AuditEventRepository(session)
        self.pricing = pricing or PricingResolver(session)

    async def register_device(
        self,
        ctx: RequestContext,
        name: str,
        device_type: Optional[str],
        pincode: Optional[str],
        location: Optional[GeoPoint] = None,
        requires_operator: bool = False,
    ) -> Device:
        _require_admin(ctx, "register devices")
        if not name or not name.strip():
            raise ValidationFailed("Device name is required")
        device = await self.devices.create(
            name=name.strip(),
            device_type=device_type,
            pincode=pincode,
            location=location,
            requires_operator=requires_operator,
        )
        self.outbox.audit(
            AuditEntityType.DEVICE,
            device.device_id,
            AuditAction.CREATED,
            ctx.user_id,
            to_state=device.status,
        )
        logger.info(f"Registered device {device.device_id} ({device.device_type}/{device.pincode})")
        return device

    async def get_device(self, device_id: UUID) -> Device:
        device = await self.devices.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)
        return device

    async def list_devices(
        self,
        ctx: RequestContext,
        status: Optional[DeviceStatus] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Device]:
        _require_admin(ctx, "list devices")
        return await self.devices.list(status=status, search=search, limit=limit, offset=offset)

    async def configure_pricing(
        self,
        ctx: RequestContext,
        device_id: UUID,
        default_rates: list[PricingRuleItem],
        time_specific: Sequence[TimeWindowRates] = (),
    ) -> PricingSetup:
        """
        Create the default rule for the device's scope, plus any windowed rules.

        Every window is checked before anything is written. Overlapping
        windows are reported back as conflicts rather than refused.
        """
        _require_admin(ctx, "configure pricing")
        device = await self._scoped_device(device_id)
        for window in time_specific:
            if window.effective_to < window.effective_from:
                raise ValidationFailed(
                    f"effective_to {window.effective_to} is before effective_from "
                    f"{window.effective_from}"
                )

        created = await self.pricing.create_rule(
            PricingRuleDraft(
                device_type=device.device_type,
                pincode=device.pincode,
                rules=default_rates,
                effective_from=utc_today(),
                effective_to=None,
            )
        )

        windowed: list[PricingRule] = []
        conflicts: list[PricingRule] = []
        for window in time_specific:
            result = await self.pricing.create_rule(
                PricingRuleDraft(
                    device_type=device.device_type,
                    pincode=device.pincode,
                    rules=window.rules,
                    effective_from=window.effective_from,
                    effective_to=window.effective_to,
                )
            )
            windowed.append(result.rule)
            conflicts.extend(c for c in result.conflicts if c not in conflicts)

        return PricingSetup(
            default_rule=created.rule, time_specific_rules=windowed, conflicts=conflicts
        )

    async def pricing_status(self, device_id: UUID) -> PricingStatus:
        device = await self.get_device(device_id)
        default_rule = None
        time_specific: list[PricingRule] = []
        if device.has_pricing_scope:
            default_rule = await self.pricing.get_default_rule(device.device_type, device.pincode)
            time_specific = await self.pricing.get_time_specific_rules(
                device.device_type, device.pincode, utc_today()
            )
        return PricingStatus(
            device_id=device.device_id,
            default_rule=default_rule,
            time_specific_rules=time_specific,
            requires_pricing_rule=default_rule is None,
        )

    async def finalize(
        self, ctx: RequestContext, device_id: UUID, action: OnboardingAction
    ) -> Device:
        """ONBOARD hides the device; TAKE_LIVE publishes it to discovery."""
        _require_admin(ctx, "finalize onboarding")
        device = await self.get_device(device_id)
        if action == OnboardingAction.TAKE_LIVE:
            return await self._set_status(ctx, device, DeviceStatus.LIVE)
        return await self._set_status(ctx, device, DeviceStatus.ONBOARDED)

    async def change_status(
        self, ctx: RequestContext, device_id: UUID, status: DeviceStatus
    ) -> Device:
        _require_admin(ctx, "change device status")
        device = await self.get_device(device_id)
        return await self._set_status(ctx, device, status)

    async def _set_status(
        self, ctx: RequestContext, device: Device, status: DeviceStatus
    ) -> Device:
        if device.status == DeviceStatus.RETIRED:
            raise DeviceRetired(device.device_id)
        if status == DeviceStatus.LIVE:
            if not device.has_pricing_scope:
                raise ValidationFailed(f"Device {device.device_id} missing device type or pincode")
            if not await self.pricing.has_default_rule(device.device_type, device.pincode):
                raise PricingRuleRequired(device.device_type, device.pincode)
        if status == device.status:
            return device

        updated = await self.devices.update_status(device.device_id, status, device.version)
        if updated is None:
            raise ConcurrentModification("device", device.device_id)
        self.outbox.audit(
            AuditEntityType.DEVICE,
            device.device_id,
            AuditAction.STATUS_CHANGED,
            ctx.user_id,
            from_state=device.status,
            to_state=status,
        )
        logger.info(
            f"Device {device.device_id} status {device.status.value} -> {status.value}"
        )
        return updated

    async def _scoped_device(self, device_id: UUID) -> Device:
        device = await self.get_device(device_id)
        if not device.has_pricing_scope:
            raise ValidationFailed(f"Device {device_id} missing device type or pincode")
        return device

    # Pricing administration

    async def create_pricing_rule(
        self, ctx: RequestContext, draft: PricingRuleDraft
    ) -> PricingRuleCreation:
        _require_admin(ctx, "create pricing rules")
        return await self.pricing.create_rule(draft)

    async def deactivate_pricing_rule(self, ctx: RequestContext, rule_id: UUID) -> PricingRule:
        _require_admin(ctx, "deactivate pricing rules")
        return await self.pricing.deactivate_rule(rule_id)

    async def save_threshold(
        self,
        ctx: RequestContext,
        device_type: str,
        max_rental_hours: float,
        max_rental_acres: float,
    ) -> ThresholdConfig:
        _require_admin(ctx, "configure thresholds")
        config = await self.pricing.save_threshold(device_type, max_rental_hours, max_rental_acres)
        logger.info(
            f"Threshold for {device_type}: rent up to {max_rental_hours}h / {max_rental_acres} acres"
        )
        return config

    # Distributor profiles

    async def create_distributor_profile(
        self,
        ctx: RequestContext,
        user_id: str,
        name: str,
        pincode: Optional[str] = None,
    ) -> DistributorProfile:
        """Administrators create any profile; a distributor only their own."""
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        own = ctx.user_id == user_id and ctx.has_role(UserRole.DISTRIBUTOR)
        if not (ctx.is_admin or own):
            raise ForbiddenError("Cannot create a distributor profile for another user")
        if await self.profiles.get_by_user_id(user_id) is not None:
            raise PreconditionFailed(
                f"User {user_id} already has a distributor profile", "DISTRIBUTOR_PROFILE_EXISTS"
            )
        profile = await self.profiles.create(user_id=user_id, name=name, pincode=pincode)
        logger.info(f"Created distributor profile {profile.distributor_id} for user {user_id}")
        return profile

    async def get_distributor_profile(self, distributor_id: str) -> DistributorProfile:
        profile = await self.profiles.get(distributor_id)
        if profile is None:
            raise DistributorProfileNotFound(distributor_id)
        return profile

    async def audit_trail(
        self,
        ctx: RequestContext,
        entity_type: AuditEntityType,
        entity_id: str,
        limit: int = 50,
    ) -> list[AuditEvent]:
        _require_admin(ctx, "read the audit trail")
        return await self.audit_events.list_for_entity(entity_type, entity_id, limit)
