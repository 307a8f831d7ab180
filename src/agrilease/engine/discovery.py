"""Device discovery: availability filtering, search and intents."""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.config import settings
from agrilease.db.repositories import (
    DeviceRepository,
    DiscoveryIntentRepository,
    OrderRepository,
    PricingRuleRepository,
)
from agrilease.engine.errors import (
    DeviceNotFound,
    DeviceNotVisible,
    ThresholdConfigNotFound,
    ValidationFailed,
)
from agrilease.engine.handlers import OrderTypeResolver
from agrilease.engine.pricing import PricingResolver
from agrilease.models import (
    Device,
    DeviceStatus,
    DiscoveryIntent,
    LeaseState,
    OrderStatus,
    OrderType,
    PricingMetric,
    PricingRule,
    RequestContext,
    UserRole,
)
from agrilease.utils.time import utc_now, utc_today

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

SHOW_INTEREST = "show_interest"


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two coordinates in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class IndicativeRate(BaseModel):
    metric: PricingMetric
    rate: float


class DeviceResult(BaseModel):
    device_id: UUID
    name: str
    device_type: Optional[str]
    pincode: Optional[str]
    distance_km: Optional[float] = None
    indicative_rate: Optional[IndicativeRate] = None
    lease_state: LeaseState
    intent_type: Optional[OrderType] = None
    allowed_actions: list[str] = Field(default_factory=lambda: [SHOW_INTEREST])


class DiscoveryPage(BaseModel):
    results: list[DeviceResult]
    total_count: int
    page: int
    page_size: int


class DeviceDetails(BaseModel):
    device: Device
    lease_state: LeaseState
    distance_km: Optional[float] = None
    default_rule: Optional[PricingRule] = None
    time_specific_rules: list[PricingRule] = Field(default_factory=list)


@dataclass
class DiscoveryQuery:
    latitude: float
    longitude: float
    radius_km: Optional[float] = None
    device_type: Optional[str] = None
    requested_hours: Optional[float] = None
    requested_acres: Optional[float] = None
    page: int = 0
    page_size: Optional[int] = None


def clamp_page(page: Optional[int], page_size: Optional[int]) -> tuple[int, int]:
    """Page index floored at 0, page size clamped into [1, max]."""
    size = page_size if page_size is not None else settings.discovery_default_page_size
    size = min(max(1, size), settings.discovery_max_page_size)
    return max(0, page or 0), size


class AvailabilityFilter:
    """
    Narrows live, nearby devices down to the ones a caller may order.

    Filters apply in a fixed order: device type, lease visibility for the
    caller's role, presence of a default pricing rule, then exclusion of
    devices with an order in committed use.
    """

    def __init__(self, session: AsyncSession):
        self.orders = OrderRepository(session)
        self.rules = PricingRuleRepository(session)

    @staticmethod
    def by_device_type(devices: list[Device], device_type: Optional[str]) -> list[Device]:
        if not device_type:
            return devices
        return [d for d in devices if d.device_type == device_type]

    @staticmethod
    def by_lease_visibility(devices: list[Device], ctx: RequestContext) -> list[Device]:
        """Farmers see rentable (leased) devices, distributors see leaseable ones."""
        if not ctx.is_authenticated:
            return devices
        if ctx.active_role == UserRole.FARMER:
            return [d for d in devices if d.is_leased]
        if ctx.active_role == UserRole.DISTRIBUTOR:
            return [d for d in devices if not d.is_leased]
        return devices

    async def by_pricing(self, devices: list[Device]) -> list[Device]:
        scoped = [d for d in devices if d.has_pricing_scope]
        priced = await self.rules.default_scopes((d.device_type, d.pincode) for d in scoped)
        return [d for d in scoped if (d.device_type, d.pincode) in priced]

    async def by_order_state(self, devices: list[Device]) -> list[Device]:
        statuses = await self.orders.statuses_by_device(d.device_id for d in devices)
        committed = OrderStatus.committed_states()
        return [d for d in devices if not statuses.get(d.device_id, set()) & committed]

    async def apply(
        self, devices: list[Device], ctx: RequestContext, device_type: Optional[str] = None
    ) -> list[Device]:
        devices = self.by_device_type(devices, device_type)
        devices = self.by_lease_visibility(devices, ctx)
        devices = await self.by_pricing(devices)
        return await self.by_order_state(devices)

    async def is_available(self, device: Device, ctx: RequestContext) -> bool:
        if device.status != DeviceStatus.LIVE:
            return False
        return bool(await self.apply([device], ctx))


class DiscoveryService:
    """Search, device details and discovery intents."""

    def __init__(self, session: AsyncSession, pricing: Optional[PricingResolver] = None):
        self.session = session
        self.devices = DeviceRepository(session)
        self.intents = DiscoveryIntentRepository(session)
        self.pricing = pricing or PricingResolver(session)
        self.availability = AvailabilityFilter(session)
        self.order_types = OrderTypeResolver(session)

    async def search(self, ctx: RequestContext, query: DiscoveryQuery) -> DiscoveryPage:
        if query.latitude is None or query.longitude is None:
            raise ValidationFailed("latitude and longitude are required")
        radius = (
            query.radius_km if query.radius_km is not None else settings.discovery_default_radius_km
        )
        if radius <= 0:
            raise ValidationFailed("radius_km must be positive")
        page, page_size = clamp_page(query.page, query.page_size)

        nearby = []
        for device in await self.devices.list_by_status(DeviceStatus.LIVE):
            if device.location is None:
                continue
            distance = haversine_km(
                query.latitude, query.longitude, device.location.latitude, device.location.longitude
            )
            if distance <= radius:
                nearby.append((distance, device))
        nearby.sort(key=lambda pair: pair[0])
        distances = {device.device_id: distance for distance, device in nearby}

        eligible = await self.availability.apply(
            [device for _, device in nearby], ctx, query.device_type
        )
        window = eligible[page * page_size:(page + 1) * page_size]

        results = []
        for device in window:
            results.append(
                await self._to_result(
                    device, distances[device.device_id], query.requested_hours, query.requested_acres
                )
            )
        return DiscoveryPage(
            results=results, total_count=len(eligible), page=page, page_size=page_size
        )

    async def _to_result(
        self,
        device: Device,
        distance_km: float,
        requested_hours: Optional[float],
        requested_acres: Optional[float],
    ) -> DeviceResult:
        indicative = None
        rule = await self.pricing.resolve_for_device(device)
        if rule is not None and rule.rules:
            first = rule.rules[0]
            indicative = IndicativeRate(metric=first.metric, rate=first.rate)

        intent_type = None
        if requested_hours is not None or requested_acres is not None:
            try:
                intent_type = await self.order_types.from_thresholds(
                    device.device_type, requested_hours, requested_acres
                )
            except ThresholdConfigNotFound:
                logger.warning(
                    f"No threshold config for device type {device.device_type}; "
                    f"intent type left unset for device {device.device_id}"
                )

        return DeviceResult(
            device_id=device.device_id,
            name=device.name,
            device_type=device.device_type,
            pincode=device.pincode,
            distance_km=round(distance_km, 2),
            indicative_rate=indicative,
            lease_state=LeaseState.LEASED if device.is_leased else LeaseState.AVAILABLE,
            intent_type=intent_type,
        )

    async def get_device_details(
        self,
        ctx: RequestContext,
        device_id: UUID,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> DeviceDetails:
        """LIVE devices are public; ONBOARDED ones only to signed-in callers."""
        device = await self.devices.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)
        visible = device.status == DeviceStatus.LIVE or (
            device.status == DeviceStatus.ONBOARDED and ctx.is_authenticated
        )
        if not visible:
            raise DeviceNotVisible(device_id)

        default_rule = None
        time_specific: list[PricingRule] = []
        if device.has_pricing_scope:
            default_rule = await self.pricing.get_default_rule(device.device_type, device.pincode)
            time_specific = await self.pricing.get_time_specific_rules(
                device.device_type, device.pincode, utc_today()
            )

        distance = None
        if latitude is not None and longitude is not None and device.location is not None:
            distance = round(
                haversine_km(latitude, longitude, device.location.latitude, device.location.longitude),
                2,
            )

        return DeviceDetails(
            device=device,
            lease_state=LeaseState.LEASED if device.is_leased else LeaseState.AVAILABLE,
            distance_km=distance,
            default_rule=default_rule,
            time_specific_rules=time_specific,
        )

    async def create_intent(
        self,
        device_id: UUID,
        intent_type: Optional[OrderType] = None,
        requested_hours: Optional[float] = None,
        requested_acres: Optional[float] = None,
    ) -> DiscoveryIntent:
        device = await self.devices.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)
        intent = await self.intents.create(
            device_id=device_id,
            expires_at=utc_now() + timedelta(minutes=settings.intent_ttl_minutes),
            intent_type=intent_type,
            requested_hours=requested_hours,
            requested_acres=requested_acres,
        )
        logger.info(f"Created discovery intent {intent.intent_id} for device {device_id}")
        return intent
