"""
Lease creation, operator assignment and lease ending tests.
"""

from unittest.mock import AsyncMock

import pytest

from agrilease.db.repositories import DeviceRepository, LeaseRepository
from agrilease.engine import AgriLeaseEngine
from agrilease.engine.errors import (
    ConcurrentModification,
    DeviceAlreadyLeased,
    DistributorProfileNotFound,
    ForbiddenError,
    InvalidStateTransition,
    OrderNotFound,
    OrderNotLeaseable,
    UploadFailed,
    ValidationFailed,
)
from agrilease.engine.leases import LeaseRequest
from agrilease.models import (
    AuditAction,
    CommitmentType,
    DistributorHandler,
    DocumentType,
    LeaseStatus,
    NotificationEvent,
    OperatorAssignment,
    OperatorRole,
    OrderStatus,
    OrderType,
    RecipientRole,
    UploadedDocument,
)
from agrilease.observability.metrics import metrics

from conftest import make_ctx


async def _accepted_lease_order(seed, **kwargs):
    distributor = await seed.distributor()
    device = await seed.priced_device()
    order = await seed.order(device, status=OrderStatus.ACCEPTED, **kwargs)
    return distributor, device, order


@pytest.mark.asyncio
async def test_create_lease_links_order_and_device(seed, session, make_engine, admin_ctx, uploader, dispatcher, notifier):
    distributor, device, order = await _accepted_lease_order(seed)
    engine = make_engine()

    lease = await engine.leases.create_lease_from_order(
        admin_ctx,
        LeaseRequest(
            order_id=order.order_id,
            deposit_amount=15000.0,
            operators=[
                OperatorAssignment(operator_id="op-1", role=OperatorRole.PRIMARY),
                OperatorAssignment(operator_id="op-2", role=OperatorRole.SECONDARY),
            ],
            attachments=[UploadedDocument("agreement.pdf", b"%PDF-1.4", "application/pdf")],
            attachment_types=[DocumentType.LEASE_AGREEMENT],
        ),
    )

    assert lease.status == LeaseStatus.ACTIVE
    assert lease.distributor_id == distributor.distributor_id
    assert lease.commitment.type == CommitmentType.HOURS
    assert lease.commitment.value == 40.0
    # 40 hours at the default 500/hour
    assert lease.estimated_price == 20000.0
    assert lease.deposit_amount == 15000.0
    assert lease.signed_by_admin_id == admin_ctx.user_id
    assert lease.primary_operator.operator_id == "op-1"
    assert all(o.assigned_at is not None for o in lease.operators)

    [attachment] = lease.attachments
    assert attachment.type == DocumentType.LEASE_AGREEMENT
    assert attachment.url == f"memory://leases/{order.order_id}/0/agreement.pdf"
    [(scope, entity_id, files)] = uploader.calls
    assert (scope, entity_id, len(files)) == ("leases", str(order.order_id), 1)

    stored_device = await DeviceRepository(session).get(device.device_id)
    stored_order = await seed.orders.get(order.order_id)
    assert stored_device.current_lease_id == lease.lease_id
    assert stored_device.version == device.version + 1
    assert stored_order.lease_id == lease.lease_id
    assert stored_order.status == OrderStatus.ACCEPTED

    await engine.commit()
    await dispatcher.drain()
    assert {(e, r) for e, r, _ in notifier.sent} == {
        (NotificationEvent.LEASE_CREATED, RecipientRole.DISTRIBUTOR),
        (NotificationEvent.LEASE_CREATED, RecipientRole.ADMINISTRATOR),
    }
    assert metrics.counter("leases.created") == 1


@pytest.mark.asyncio
async def test_only_admin_creates_leases(seed, make_engine, distributor_ctx):
    _, _, order = await _accepted_lease_order(seed)

    with pytest.raises(ForbiddenError):
        await make_engine().leases.create_lease_from_order(
            distributor_ctx, LeaseRequest(order_id=order.order_id)
        )


@pytest.mark.asyncio
async def test_order_must_be_accepted_lease(seed, make_engine, admin_ctx):
    distributor = await seed.distributor()
    device = await seed.priced_device()
    pending = await seed.order(device, status=OrderStatus.UNDER_REVIEW)
    rent = await seed.order(
        device,
        order_type=OrderType.RENT,
        status=OrderStatus.ACCEPTED,
        handler=DistributorHandler(distributor_id=distributor.distributor_id),
    )
    engine = make_engine()

    with pytest.raises(OrderNotLeaseable):
        await engine.leases.create_lease_from_order(admin_ctx, LeaseRequest(order_id=pending.order_id))
    with pytest.raises(OrderNotLeaseable):
        await engine.leases.create_lease_from_order(admin_ctx, LeaseRequest(order_id=rent.order_id))


@pytest.mark.asyncio
async def test_second_lease_for_order_refused(seed, make_engine, admin_ctx):
    _, _, order = await _accepted_lease_order(seed)
    engine = make_engine()
    await engine.leases.create_lease_from_order(admin_ctx, LeaseRequest(order_id=order.order_id))

    with pytest.raises(OrderNotLeaseable):
        await engine.leases.create_lease_from_order(admin_ctx, LeaseRequest(order_id=order.order_id))


@pytest.mark.asyncio
async def test_leased_device_refused(seed, make_engine, admin_ctx):
    distributor = await seed.distributor()
    device, _ = await seed.leased_device(distributor)
    order = await seed.order(device, status=OrderStatus.ACCEPTED)

    with pytest.raises(DeviceAlreadyLeased):
        await make_engine().leases.create_lease_from_order(
            admin_ctx, LeaseRequest(order_id=order.order_id)
        )


@pytest.mark.asyncio
async def test_requester_without_profile_refused(seed, make_engine, admin_ctx):
    device = await seed.priced_device()
    order = await seed.order(device, status=OrderStatus.ACCEPTED, requested_by="nobody")

    with pytest.raises(DistributorProfileNotFound):
        await make_engine().leases.create_lease_from_order(
            admin_ctx, LeaseRequest(order_id=order.order_id)
        )


@pytest.mark.asyncio
async def test_unknown_order(make_engine, admin_ctx):
    from uuid import uuid4

    with pytest.raises(OrderNotFound):
        await make_engine().leases.create_lease_from_order(admin_ctx, LeaseRequest(order_id=uuid4()))


@pytest.mark.asyncio
async def test_too_many_attachment_types(seed, make_engine, admin_ctx):
    _, _, order = await _accepted_lease_order(seed)

    with pytest.raises(ValidationFailed):
        await make_engine().leases.create_lease_from_order(
            admin_ctx,
            LeaseRequest(
                order_id=order.order_id,
                attachment_types=[DocumentType.LEASE_AGREEMENT],
            ),
        )


@pytest.mark.asyncio
async def test_attachments_default_to_other(seed, make_engine, admin_ctx):
    _, _, order = await _accepted_lease_order(seed)

    lease = await make_engine().leases.create_lease_from_order(
        admin_ctx,
        LeaseRequest(
            order_id=order.order_id,
            attachments=[
                UploadedDocument("agreement.pdf", b"one"),
                UploadedDocument("licence.jpg", b"two"),
            ],
            attachment_types=[DocumentType.LEASE_AGREEMENT],
        ),
    )

    assert [a.type for a in lease.attachments] == [DocumentType.LEASE_AGREEMENT, DocumentType.OTHER]


@pytest.mark.asyncio
async def test_extra_primary_operator_skipped(seed, make_engine, admin_ctx):
    _, _, order = await _accepted_lease_order(seed)

    lease = await make_engine().leases.create_lease_from_order(
        admin_ctx,
        LeaseRequest(
            order_id=order.order_id,
            operators=[
                OperatorAssignment(operator_id="op-1", role=OperatorRole.PRIMARY),
                OperatorAssignment(operator_id="op-2", role=OperatorRole.PRIMARY),
            ],
        ),
    )

    assert [o.operator_id for o in lease.operators] == ["op-1"]


@pytest.mark.asyncio
async def test_failed_upload_writes_nothing(seed, session, dispatcher, admin_ctx):
    class BrokenUploader:
        async def upload(self, scope, entity_id, files):
            raise UploadFailed("storage offline")

    _, device, order = await _accepted_lease_order(seed)
    engine = AgriLeaseEngine(session, dispatcher=dispatcher, uploader=BrokenUploader())

    with pytest.raises(UploadFailed) as exc_info:
        await engine.leases.create_lease_from_order(
            admin_ctx,
            LeaseRequest(order_id=order.order_id, attachments=[UploadedDocument("a.pdf", b"x")]),
        )

    assert exc_info.value.status_code == 502
    assert (await DeviceRepository(session).get(device.device_id)).current_lease_id is None
    assert (await seed.orders.get(order.order_id)).lease_id is None


@pytest.mark.asyncio
async def test_attachments_discarded_when_lease_not_created(seed, make_engine, admin_ctx, uploader):
    _, device, order = await _accepted_lease_order(seed)
    stale = await seed.devices.get(device.device_id)
    await seed.devices.update_status(device.device_id, device.status, device.version)

    engine = make_engine()
    engine.leases.devices.get = AsyncMock(return_value=stale)

    with pytest.raises(ConcurrentModification):
        await engine.leases.create_lease_from_order(
            admin_ctx,
            LeaseRequest(
                order_id=order.order_id,
                attachments=[UploadedDocument("agreement.pdf", b"one"), UploadedDocument("id.jpg", b"two")],
            ),
        )

    [(_, _, stored)] = uploader.calls
    assert len(stored) == 2
    assert uploader.discarded == [
        f"memory://leases/{order.order_id}/0/agreement.pdf",
        f"memory://leases/{order.order_id}/1/id.jpg",
    ]


# ============================================================================
# After creation
# ============================================================================


@pytest.mark.asyncio
async def test_primary_assignment_replaces_primary(seed, make_engine, admin_ctx, dispatcher, notifier):
    distributor = await seed.distributor()
    _, lease = await seed.leased_device(distributor)
    engine = make_engine()

    await engine.leases.assign_operator(
        admin_ctx, lease.lease_id, OperatorAssignment(operator_id="op-1", role=OperatorRole.PRIMARY)
    )
    await engine.leases.assign_operator(
        admin_ctx, lease.lease_id, OperatorAssignment(operator_id="op-2", role=OperatorRole.SECONDARY)
    )
    updated = await engine.leases.assign_operator(
        admin_ctx, lease.lease_id, OperatorAssignment(operator_id="op-3", role=OperatorRole.PRIMARY)
    )

    assert [(o.operator_id, o.role) for o in updated.operators] == [
        ("op-2", OperatorRole.SECONDARY),
        ("op-3", OperatorRole.PRIMARY),
    ]

    await engine.commit()
    await dispatcher.drain()
    recipients = [p["recipient_id"] for e, _, p in notifier.sent if e == NotificationEvent.OPERATOR_ASSIGNED]
    assert recipients == ["op-1", "op-2", "op-3"]


@pytest.mark.asyncio
async def test_operator_assignment_checks_lease_version(seed, make_engine, admin_ctx):
    """Two assignments from the same read: the second one loses instead of overwriting."""
    distributor = await seed.distributor()
    _, lease = await seed.leased_device(distributor)
    engine = make_engine()

    first = await engine.leases.assign_operator(
        admin_ctx, lease.lease_id, OperatorAssignment(operator_id="op-1", role=OperatorRole.SECONDARY)
    )
    assert first.version == lease.version + 1

    engine.leases.leases.get = AsyncMock(return_value=lease)
    with pytest.raises(ConcurrentModification) as exc_info:
        await engine.leases.assign_operator(
            admin_ctx, lease.lease_id, OperatorAssignment(operator_id="op-2", role=OperatorRole.SECONDARY)
        )

    assert exc_info.value.status_code == 409
    assert metrics.counter("leases.conflicts") == 1
    stored = await seed.leases.get(lease.lease_id)
    assert [o.operator_id for o in stored.operators] == ["op-1"]


@pytest.mark.asyncio
async def test_assign_operator_requires_admin(seed, make_engine, distributor_ctx):
    distributor = await seed.distributor()
    _, lease = await seed.leased_device(distributor)

    with pytest.raises(ForbiddenError):
        await make_engine().leases.assign_operator(
            distributor_ctx,
            lease.lease_id,
            OperatorAssignment(operator_id="op-1", role=OperatorRole.PRIMARY),
        )


@pytest.mark.asyncio
async def test_end_lease_releases_device(seed, session, make_engine, admin_ctx, dispatcher, audit_sink):
    distributor = await seed.distributor()
    device, lease = await seed.leased_device(distributor)
    engine = make_engine()

    ended = await engine.leases.end_lease(admin_ctx, lease.lease_id, LeaseStatus.COMPLETED, "Season over")

    assert ended.status == LeaseStatus.COMPLETED
    assert (await DeviceRepository(session).get(device.device_id)).current_lease_id is None

    with pytest.raises(InvalidStateTransition):
        await engine.leases.end_lease(admin_ctx, lease.lease_id, LeaseStatus.TERMINATED)
    with pytest.raises(InvalidStateTransition):
        await engine.leases.assign_operator(
            admin_ctx, lease.lease_id, OperatorAssignment(operator_id="op-9", role=OperatorRole.SECONDARY)
        )

    await engine.commit()
    await dispatcher.drain()
    [record] = audit_sink.records
    assert record.action == AuditAction.STATUS_CHANGED
    assert (record.from_state, record.to_state) == ("active", "completed")


@pytest.mark.asyncio
async def test_end_lease_needs_terminal_status(seed, make_engine, admin_ctx):
    distributor = await seed.distributor()
    _, lease = await seed.leased_device(distributor)

    with pytest.raises(ValidationFailed):
        await make_engine().leases.end_lease(admin_ctx, lease.lease_id, LeaseStatus.ACTIVE)
    with pytest.raises(ForbiddenError):
        await make_engine().leases.end_lease(
            make_ctx("dist-user-1"), lease.lease_id, LeaseStatus.COMPLETED
        )


@pytest.mark.asyncio
async def test_distributor_lease_listing(seed, session, make_engine):
    distributor = await seed.distributor()
    _, lease = await seed.leased_device(distributor)
    engine = make_engine()

    active = await engine.leases.list_leases_for_distributor(distributor.distributor_id, LeaseStatus.ACTIVE)
    done = await engine.leases.list_leases_for_distributor(distributor.distributor_id, LeaseStatus.COMPLETED)

    assert [item.lease_id for item in active] == [lease.lease_id]
    assert done == []
    assert (await LeaseRepository(session).get(lease.lease_id)).distributor_id == distributor.distributor_id
