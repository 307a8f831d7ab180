"""Order type derivation and handler resolution."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.config import OrderTypeStrategy, settings
from agrilease.db.repositories import (
    DistributorProfileRepository,
    LeaseRepository,
    ThresholdConfigRepository,
)
from agrilease.engine.errors import (
    AuthenticationRequired,
    DeviceAlreadyLeased,
    DeviceNotLeased,
    ForbiddenError,
    LeaseNotFound,
    ThresholdConfigNotFound,
)
from agrilease.models import (
    AdministratorHandler,
    Device,
    DistributorHandler,
    Order,
    OrderType,
    RequestContext,
    UserRole,
)

logger = logging.getLogger(__name__)


class OrderTypeResolver:
    """Decides whether a new order is a LEASE or a RENT."""

    def __init__(self, session: AsyncSession, strategy: Optional[OrderTypeStrategy] = None):
        self.thresholds = ThresholdConfigRepository(session)
        self.strategy = strategy or settings.order_type_strategy

    async def resolve(
        self,
        ctx: RequestContext,
        device: Device,
        requested_hours: Optional[float] = None,
        requested_acres: Optional[float] = None,
    ) -> OrderType:
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        if self.strategy == OrderTypeStrategy.THRESHOLD:
            return await self.from_thresholds(device.device_type, requested_hours, requested_acres)
        return self.from_role(ctx)

    @staticmethod
    def from_role(ctx: RequestContext) -> OrderType:
        """Distributors lease from the platform, farmers rent from distributors."""
        if ctx.active_role == UserRole.DISTRIBUTOR:
            return OrderType.LEASE
        if ctx.active_role == UserRole.FARMER:
            return OrderType.RENT
        raise ForbiddenError("Only farmers and distributors can create orders")

    async def from_thresholds(
        self,
        device_type: Optional[str],
        requested_hours: Optional[float],
        requested_acres: Optional[float],
    ) -> OrderType:
        """RENT while every requested quantity is within the rental limits, else LEASE."""
        config = await self.thresholds.get_active(device_type) if device_type else None
        if config is None:
            raise ThresholdConfigNotFound(device_type or "<untyped>")

        within_hours = requested_hours is None or requested_hours <= config.max_rental_hours
        within_acres = requested_acres is None or requested_acres <= config.max_rental_acres
        return OrderType.RENT if within_hours and within_acres else OrderType.LEASE


class HandlerResolver:
    """Routes an order to the party responsible for it and checks callers against it."""

    def __init__(self, session: AsyncSession):
        self.leases = LeaseRepository(session)
        self.profiles = DistributorProfileRepository(session)

    async def resolve(
        self, order_type: OrderType, device: Device
    ) -> AdministratorHandler | DistributorHandler:
        """
        LEASE orders go to the administrators and need an unleased device.
        RENT orders go to the distributor holding the device's current lease.
        """
        if order_type == OrderType.LEASE:
            if device.current_lease_id is not None:
                raise DeviceAlreadyLeased(device.device_id)
            return AdministratorHandler()

        if device.current_lease_id is None:
            raise DeviceNotLeased(device.device_id)
        lease = await self.leases.get(device.current_lease_id)
        if lease is None:
            raise LeaseNotFound(device.current_lease_id)
        return DistributorHandler(distributor_id=lease.distributor_id)

    async def is_handler(self, ctx: RequestContext, order: Order) -> bool:
        if not ctx.is_authenticated:
            return False
        if isinstance(order.handler, AdministratorHandler):
            return ctx.is_admin
        profile = await self.profiles.get_by_user_id(ctx.user_id)
        return profile is not None and profile.distributor_id == order.handler.distributor_id

    async def authorize(self, ctx: RequestContext, order: Order) -> None:
        """Raise ForbiddenError unless the caller is the order's resolved handler."""
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        if not await self.is_handler(ctx, order):
            raise ForbiddenError(f"Caller is not the handler of order {order.order_id}")
