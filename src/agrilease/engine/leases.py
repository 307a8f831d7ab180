"""Lease creation, operator assignment and lease ending."""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.db.repositories import (
    DeviceRepository,
    DistributorProfileRepository,
    LeaseRepository,
    OrderRepository,
)
from agrilease.engine.errors import (
    AgriLeaseError,
    ConcurrentModification,
    DeviceAlreadyLeased,
    DeviceNotFound,
    DistributorProfileNotFound,
    ForbiddenError,
    InvalidStateTransition,
    LeaseNotFound,
    OrderNotFound,
    OrderNotLeaseable,
    ValidationFailed,
)
from agrilease.engine.pricing import PricingResolver, estimate_price
from agrilease.events.outbox import EventOutbox
from agrilease.models import (
    Attachment,
    AuditAction,
    AuditEntityType,
    Commitment,
    CommitmentType,
    DocumentType,
    DocumentUploader,
    Lease,
    LeaseStatus,
    NotificationEvent,
    OperatorAssignment,
    OperatorRole,
    Order,
    OrderStatus,
    OrderType,
    RecipientRole,
    RequestContext,
    UploadedDocument,
)
from agrilease.observability.metrics import metrics
from agrilease.utils.time import utc_now

logger = logging.getLogger(__name__)

ATTACHMENT_SCOPE = "leases"


@dataclass
class LeaseRequest:
    """Administrator input for turning an accepted LEASE order into a lease."""

    order_id: UUID
    deposit_amount: Optional[float] = None
    notes: Optional[str] = None
    operators: list[OperatorAssignment] = field(default_factory=list)
    attachments: Sequence[UploadedDocument] = ()
    # Parallel to attachments; missing entries default to OTHER
    attachment_types: Sequence[DocumentType] = ()


def _lease_payload(lease: Lease, **extra) -> dict:
    payload = {
        "lease_id": str(lease.lease_id),
        "device_id": str(lease.device_id),
        "order_id": str(lease.order_id),
        "distributor_id": lease.distributor_id,
        "status": lease.status.value,
        "start_date": lease.start_date.isoformat() if lease.start_date else None,
        "end_date": lease.end_date.isoformat() if lease.end_date else None,
    }
    payload.update(extra)
    return payload


class LeaseCreationCoordinator:
    """
    Converts accepted LEASE orders into leases and manages them afterwards.

    The lease row, the device's lease reference and the order's lease
    reference are written inside one SAVEPOINT. The device and order writes
    are conditional on the versions read during validation, so two racing
    creations for the same device cannot both succeed.
    """

    def __init__(
        self,
        session: AsyncSession,
        outbox: EventOutbox,
        uploader: DocumentUploader,
        pricing: Optional[PricingResolver] = None,
    ):
        self.session = session
        self.outbox = outbox
        self.uploader = uploader
        self.orders = OrderRepository(session)
        self.devices = DeviceRepository(session)
        self.leases = LeaseRepository(session)
        self.profiles = DistributorProfileRepository(session)
        self.pricing = pricing or PricingResolver(session)

    async def create_lease_from_order(self, ctx: RequestContext, request: LeaseRequest) -> Lease:
        if not ctx.is_admin:
            raise ForbiddenError("Only administrators can create leases")

        order = await self.orders.get(request.order_id)
        if order is None:
            raise OrderNotFound(request.order_id)
        if order.order_type != OrderType.LEASE:
            raise OrderNotLeaseable(order.order_id, "only LEASE orders can create a lease")
        if order.status != OrderStatus.ACCEPTED:
            raise OrderNotLeaseable(
                order.order_id, f"order must be accepted, not {order.status.value}"
            )
        if order.lease_id is not None:
            raise OrderNotLeaseable(order.order_id, f"lease {order.lease_id} already created")

        device = await self.devices.get(order.device_id)
        if device is None:
            raise DeviceNotFound(order.device_id)
        if device.current_lease_id is not None:
            raise DeviceAlreadyLeased(device.device_id)

        profile = await self.profiles.get_by_user_id(order.requested_by)
        if profile is None:
            raise DistributorProfileNotFound(order.requested_by)

        if len(request.attachment_types) > len(request.attachments):
            raise ValidationFailed("More attachment types than attachments")

        commitment = Commitment(type=CommitmentType.HOURS, value=order.requested_hours or 0.0)
        estimated_price = await self._estimate_price(order)
        operators = self._stamp_operators(request.operators)
        attachments = await self._upload_attachments(order, request)

        try:
            async with self.session.begin_nested():
                lease = await self.leases.create(
                    device_id=device.device_id,
                    order_id=order.order_id,
                    distributor_id=profile.distributor_id,
                    commitment=commitment,
                    estimated_price=estimated_price,
                    deposit_amount=request.deposit_amount,
                    start_date=order.start_date,
                    end_date=order.end_date,
                    operators=operators,
                    attachments=attachments,
                    signed_by_admin_id=ctx.user_id,
                    notes=request.notes if request.notes is not None else order.note,
                )
                if not await self.devices.assign_lease(device.device_id, lease.lease_id, device.version):
                    metrics.inc_counter("leases.conflicts")
                    raise ConcurrentModification("device", device.device_id)
                if not await self.orders.attach_lease(order.order_id, lease.lease_id, order.version):
                    metrics.inc_counter("leases.conflicts")
                    raise ConcurrentModification("order", order.order_id)
        except IntegrityError as e:
            # Another lease for this order was inserted first
            metrics.inc_counter("leases.conflicts")
            await self._discard_attachments(attachments)
            raise ConcurrentModification("order", order.order_id) from e
        except Exception:
            await self._discard_attachments(attachments)
            raise

        self.outbox.audit(
            AuditEntityType.LEASE,
            lease.lease_id,
            AuditAction.CREATED,
            ctx.user_id,
            to_state=lease.status,
        )
        self.outbox.notify(
            NotificationEvent.LEASE_CREATED,
            RecipientRole.DISTRIBUTOR,
            _lease_payload(lease, recipient_id=profile.distributor_id, phone=order.requester_phone),
        )
        self.outbox.notify(
            NotificationEvent.LEASE_CREATED,
            RecipientRole.ADMINISTRATOR,
            _lease_payload(lease, recipient_id=ctx.user_id, phone=ctx.phone),
        )

        metrics.inc_counter("leases.created")
        logger.info(
            f"Created lease {lease.lease_id} on device {device.device_id} "
            f"for distributor {profile.distributor_id} from order {order.order_id}"
        )
        return lease

    async def get_lease(self, lease_id: UUID) -> Lease:
        lease = await self.leases.get(lease_id)
        if lease is None:
            raise LeaseNotFound(lease_id)
        return lease

    async def list_leases_for_distributor(
        self, distributor_id: str, status: Optional[LeaseStatus] = None
    ) -> list[Lease]:
        return await self.leases.list_by_distributor(distributor_id, status)

    async def assign_operator(
        self, ctx: RequestContext, lease_id: UUID, assignment: OperatorAssignment
    ) -> Lease:
        """A PRIMARY assignment replaces the current primary; SECONDARY ones accumulate."""
        if not ctx.is_admin:
            raise ForbiddenError("Only administrators can assign operators")
        lease = await self.get_lease(lease_id)
        if lease.status != LeaseStatus.ACTIVE:
            raise InvalidStateTransition(lease.status, "operator assignment")

        operators = list(lease.operators)
        if assignment.role == OperatorRole.PRIMARY:
            operators = [o for o in operators if o.role != OperatorRole.PRIMARY]
        stamped = assignment.model_copy(update={"assigned_at": utc_now()})
        operators.append(stamped)

        updated = await self.leases.update_operators(lease_id, operators, lease.version)
        if updated is None:
            metrics.inc_counter("leases.conflicts")
            raise ConcurrentModification("lease", lease_id)
        self.outbox.audit(
            AuditEntityType.LEASE,
            lease_id,
            AuditAction.OPERATOR_ASSIGNED,
            ctx.user_id,
            note=f"{stamped.role.value}:{stamped.operator_id}",
        )
        self.outbox.notify(
            NotificationEvent.OPERATOR_ASSIGNED,
            RecipientRole.OPERATOR,
            _lease_payload(updated, recipient_id=stamped.operator_id, role=stamped.role.value),
        )
        logger.info(
            f"Assigned {stamped.role.value} operator {stamped.operator_id} to lease {lease_id}"
        )
        return updated

    async def end_lease(
        self,
        ctx: RequestContext,
        lease_id: UUID,
        to_status: LeaseStatus,
        note: Optional[str] = None,
    ) -> Lease:
        """Complete or terminate an active lease and release its device."""
        if not ctx.is_admin:
            raise ForbiddenError("Only administrators can end leases")
        if not to_status.is_terminal():
            raise ValidationFailed("A lease can only be ended as completed or terminated")
        lease = await self.get_lease(lease_id)
        if lease.status != LeaseStatus.ACTIVE:
            raise InvalidStateTransition(lease.status, to_status)

        async with self.session.begin_nested():
            updated = await self.leases.update_status(lease_id, LeaseStatus.ACTIVE, to_status, note)
            if updated is None:
                raise ConcurrentModification("lease", lease_id)
            if not await self.devices.release_lease(lease.device_id, lease_id):
                raise ConcurrentModification("device", lease.device_id)

        self.outbox.audit(
            AuditEntityType.LEASE,
            lease_id,
            AuditAction.STATUS_CHANGED,
            ctx.user_id,
            from_state=lease.status,
            to_state=to_status,
            note=note,
        )
        self.outbox.notify(
            NotificationEvent.LEASE_STATUS_UPDATED,
            RecipientRole.DISTRIBUTOR,
            _lease_payload(
                updated, recipient_id=updated.distributor_id, previous_status=lease.status.value
            ),
        )
        metrics.inc_counter("leases.ended")
        logger.info(f"Lease {lease_id} ended as {to_status.value}; device {lease.device_id} released")
        return updated

    async def _estimate_price(self, order: Order) -> Optional[float]:
        try:
            rule = await self.pricing.get_active_pricing_for_device(order.device_id, order.start_date)
        except AgriLeaseError as e:
            logger.warning(f"Could not estimate price for order {order.order_id}: {e}")
            return None
        estimate = estimate_price(rule, order.requested_hours, order.requested_acres)
        if estimate is None:
            logger.warning(f"No price estimate for order {order.order_id}")
        return estimate

    def _stamp_operators(self, operators: Sequence[OperatorAssignment]) -> list[OperatorAssignment]:
        now = utc_now()
        stamped: list[OperatorAssignment] = []
        has_primary = False
        for assignment in operators:
            if assignment.role == OperatorRole.PRIMARY:
                if has_primary:
                    logger.warning(
                        f"Skipping extra primary operator {assignment.operator_id}; "
                        "a lease has at most one"
                    )
                    continue
                has_primary = True
            stamped.append(assignment.model_copy(update={"assigned_at": now}))
        return stamped

    async def _upload_attachments(self, order: Order, request: LeaseRequest) -> list[Attachment]:
        if not request.attachments:
            return []
        urls = await self.uploader.upload(ATTACHMENT_SCOPE, str(order.order_id), request.attachments)
        now = utc_now()
        attachments = []
        for index, url in enumerate(urls):
            doc_type = (
                request.attachment_types[index]
                if index < len(request.attachment_types)
                else DocumentType.OTHER
            )
            attachments.append(Attachment(url=url, type=doc_type, uploaded_at=now))
        return attachments

    async def _discard_attachments(self, attachments: list[Attachment]) -> None:
        if not attachments:
            return
        urls = [a.url for a in attachments]
        try:
            await self.uploader.discard(urls)
        except Exception:
            logger.error(f"Could not discard orphaned lease attachments: {urls}", exc_info=True)
        else:
            logger.info(f"Discarded {len(urls)} attachment(s) of a lease that was not created")
