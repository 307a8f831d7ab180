"""Order lifecycle coordination."""

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.config import OrderTypeStrategy, settings
from agrilease.db.repositories import (
    DeviceRepository,
    DiscoveryIntentRepository,
    DistributorProfileRepository,
    OrderRepository,
)
from agrilease.engine.errors import (
    AuthenticationRequired,
    ConcurrentModification,
    DeviceNotFound,
    DeviceNotOrderable,
    ForbiddenError,
    InvalidStateTransition,
    OrderNotFound,
    PricingRuleRequired,
    ValidationFailed,
)
from agrilease.engine.handlers import HandlerResolver, OrderTypeResolver
from agrilease.engine.pricing import PricingResolver
from agrilease.engine.state_machine import OrderStateMachine
from agrilease.events.outbox import EventOutbox
from agrilease.models import (
    AuditAction,
    AuditEntityType,
    DeviceStatus,
    DistributorHandler,
    NotificationEvent,
    Order,
    OrderRequest,
    OrderStatus,
    OrderType,
    RecipientRole,
    RequestContext,
)
from agrilease.observability.metrics import metrics

logger = logging.getLogger(__name__)

CANCELLABLE_STATES = frozenset({OrderStatus.INTEREST_RAISED})
REJECTABLE_STATES = frozenset({OrderStatus.INTEREST_RAISED, OrderStatus.UNDER_REVIEW})


def _order_payload(order: Order, **extra: Any) -> dict[str, Any]:
    payload = {
        "order_id": str(order.order_id),
        "order_type": order.order_type.value,
        "status": order.status.value,
        "device_id": str(order.device_id),
        "requested_hours": order.requested_hours,
        "requested_acres": order.requested_acres,
        "note": order.note,
    }
    payload.update(extra)
    return payload


class OrderLifecycleCoordinator:
    """
    Creates orders and moves them through their lifecycle.

    Every call takes the caller's RequestContext explicitly. Audit and
    notification records are staged on the outbox and only leave once the
    surrounding unit of work commits.
    """

    def __init__(
        self,
        session: AsyncSession,
        outbox: EventOutbox,
        pricing: Optional[PricingResolver] = None,
        strategy: Optional[OrderTypeStrategy] = None,
    ):
        self.session = session
        self.outbox = outbox
        self.orders = OrderRepository(session)
        self.devices = DeviceRepository(session)
        self.intents = DiscoveryIntentRepository(session)
        self.profiles = DistributorProfileRepository(session)
        self.pricing = pricing or PricingResolver(session)
        self.handlers = HandlerResolver(session)
        self.order_types = OrderTypeResolver(session, strategy or settings.order_type_strategy)

    async def create_order(self, ctx: RequestContext, request: OrderRequest) -> Order:
        """
        Raise interest in a device.

        The device must be LIVE and priced. The order type comes from the
        configured strategy, the handler from the order type and the device's
        lease, and the order starts in INTEREST_RAISED.
        """
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        if request.start_date and request.end_date and request.end_date < request.start_date:
            raise ValidationFailed("end_date must not be before start_date")
        for name, value in (
            ("requested_hours", request.requested_hours),
            ("requested_acres", request.requested_acres),
        ):
            if value is not None and value < 0:
                raise ValidationFailed(f"{name} must not be negative")

        device = await self.devices.get(request.device_id)
        if device is None:
            raise DeviceNotFound(request.device_id)
        if device.status != DeviceStatus.LIVE:
            raise DeviceNotOrderable(device.device_id, device.status)
        if not await self.pricing.has_default_rule(device.device_type, device.pincode):
            raise PricingRuleRequired(device.device_type, device.pincode)

        order_type = await self.order_types.resolve(
            ctx, device, request.requested_hours, request.requested_acres
        )
        handler = await self.handlers.resolve(order_type, device)

        order = await self.orders.create(
            order_type=order_type,
            device_id=device.device_id,
            requested_by=ctx.user_id,
            handler=handler,
            status=OrderStatus.INTEREST_RAISED,
            requester_phone=ctx.phone,
            requested_hours=request.requested_hours,
            requested_acres=request.requested_acres,
            start_date=request.start_date,
            end_date=request.end_date,
            note=request.note,
            intent_id=request.intent_id,
        )

        if request.intent_id is not None:
            if not await self.intents.mark_consumed(request.intent_id):
                logger.warning(f"Discovery intent {request.intent_id} not found; not consumed")

        handler_role = (
            RecipientRole.ADMINISTRATOR if order_type == OrderType.LEASE else RecipientRole.HANDLER
        )
        self.outbox.notify(
            NotificationEvent.ORDER_CREATED,
            handler_role,
            _order_payload(order, recipient_id=handler.handler_id),
        )
        self.outbox.notify(
            NotificationEvent.ORDER_CREATED,
            RecipientRole.REQUESTER,
            _order_payload(order, recipient_id=order.requested_by, phone=order.requester_phone),
        )

        metrics.inc_counter("orders.created")
        logger.info(
            f"Created {order.order_type.value} order {order.order_id} for device "
            f"{order.device_id} (handler {handler.handler_kind.value}:{handler.handler_id})"
        )
        return order

    async def get_order(self, order_id: UUID) -> Order:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def view_order(self, ctx: RequestContext, order_id: UUID) -> Order:
        """An order is visible to its requester, its handler and administrators."""
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        order = await self.get_order(order_id)
        if order.requested_by == ctx.user_id or ctx.is_admin:
            return order
        if not await self.handlers.is_handler(ctx, order):
            raise ForbiddenError(f"Caller may not view order {order_id}")
        return order

    async def allowed_next_states(self, order_id: UUID) -> frozenset[OrderStatus]:
        order = await self.get_order(order_id)
        return OrderStateMachine.allowed_next_states(order.status)

    async def update_status(
        self,
        ctx: RequestContext,
        order_id: UUID,
        to_status: OrderStatus,
        note: Optional[str] = None,
    ) -> Order:
        """Move an order along the state machine on behalf of its handler."""
        order = await self.get_order(order_id)
        OrderStateMachine.validate(order.status, to_status)
        await self.handlers.authorize(ctx, order)

        updated = await self._transition(order, to_status, note)
        self.outbox.audit(
            AuditEntityType.ORDER,
            order.order_id,
            AuditAction.STATUS_CHANGED,
            ctx.user_id,
            from_state=order.status,
            to_state=to_status,
            note=note,
        )
        self.outbox.notify(
            NotificationEvent.ORDER_STATUS_UPDATED,
            RecipientRole.REQUESTER,
            _order_payload(
                updated,
                previous_status=order.status.value,
                recipient_id=updated.requested_by,
                phone=updated.requester_phone,
            ),
        )
        return updated

    async def cancel_order(
        self, ctx: RequestContext, order_id: UUID, note: Optional[str] = None
    ) -> Order:
        """Withdraw an order; only its requester may, and only before review."""
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        order = await self.get_order(order_id)
        if order.requested_by != ctx.user_id:
            raise ForbiddenError("Only the requester can cancel an order")
        if order.status not in CANCELLABLE_STATES:
            raise InvalidStateTransition(order.status, OrderStatus.CANCELLED)

        updated = await self._transition(order, OrderStatus.CANCELLED, note)
        self.outbox.audit(
            AuditEntityType.ORDER,
            order.order_id,
            AuditAction.CANCELLED,
            ctx.user_id,
            from_state=order.status,
            to_state=OrderStatus.CANCELLED,
            note=note,
        )
        self.outbox.notify(
            NotificationEvent.ORDER_CANCELLED,
            RecipientRole.HANDLER,
            _order_payload(updated, recipient_id=updated.handler.handler_id),
        )
        return updated

    async def reject_order(
        self, ctx: RequestContext, order_id: UUID, note: Optional[str] = None
    ) -> Order:
        """
        Turn an order down.

        LEASE orders are rejected by administrators (the distributor is the
        requester there), RENT orders only by the distributor handling them.
        """
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        order = await self.get_order(order_id)
        if order.order_type == OrderType.LEASE:
            if not ctx.is_admin:
                raise ForbiddenError("Only administrators can reject lease orders")
        else:
            await self.handlers.authorize(ctx, order)
        if order.status not in REJECTABLE_STATES:
            raise InvalidStateTransition(order.status, OrderStatus.REJECTED)

        updated = await self._transition(order, OrderStatus.REJECTED, note)
        self.outbox.audit(
            AuditEntityType.ORDER,
            order.order_id,
            AuditAction.REJECTED,
            ctx.user_id,
            from_state=order.status,
            to_state=OrderStatus.REJECTED,
            note=note,
        )
        self.outbox.notify(
            NotificationEvent.ORDER_REJECTED,
            RecipientRole.REQUESTER,
            _order_payload(updated, recipient_id=updated.requested_by, phone=updated.requester_phone),
        )
        return updated

    async def list_my_orders(
        self, ctx: RequestContext, limit: int = 50, offset: int = 0
    ) -> list[Order]:
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        return await self.orders.list(requested_by=ctx.user_id, limit=limit, offset=offset)

    async def list_lease_orders(
        self,
        ctx: RequestContext,
        status: Optional[OrderStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        if not ctx.is_admin:
            raise ForbiddenError("Only administrators can list lease orders")
        return await self.orders.list(
            order_type=OrderType.LEASE, status=status, limit=limit, offset=offset
        )

    async def list_rent_orders(
        self,
        ctx: RequestContext,
        status: Optional[OrderStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        """RENT orders handled by the caller's distributor profile."""
        if not ctx.is_authenticated:
            raise AuthenticationRequired()
        profile = await self.profiles.get_by_user_id(ctx.user_id)
        if profile is None:
            raise ForbiddenError("Caller has no distributor profile")
        return await self.orders.list(
            order_type=OrderType.RENT,
            handler=DistributorHandler(distributor_id=profile.distributor_id),
            status=status,
            limit=limit,
            offset=offset,
        )

    async def _transition(
        self, order: Order, to_status: OrderStatus, note: Optional[str]
    ) -> Order:
        updated = await self.orders.transition(
            order.order_id, order.status, to_status, order.version, note
        )
        if updated is None:
            metrics.inc_counter("orders.conflicts")
            raise ConcurrentModification("order", order.order_id)
        metrics.inc_counter("orders.transitioned")
        logger.info(
            f"Order {order.order_id} transitioned {order.status.value} -> {to_status.value}"
        )
        return updated
