"""Database repositories for AgriLease entities."""

from datetime import date, datetime
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.db.tables import (
    DEFAULT_SLOT,
    AuditEventTable,
    DeviceTable,
    DiscoveryIntentTable,
    DistributorProfileTable,
    LeaseTable,
    OrderTable,
    PricingRuleTable,
    ThresholdConfigTable,
)
from agrilease.models import (
    Attachment,
    AuditAction,
    AuditEntityType,
    AuditEvent,
    Commitment,
    Device,
    DeviceStatus,
    DiscoveryIntent,
    DistributorProfile,
    GeoPoint,
    IntentStatus,
    Lease,
    LeaseStatus,
    OperatorAssignment,
    Order,
    OrderStatus,
    OrderType,
    PricingRule,
    PricingRuleItem,
    RuleStatus,
    ThresholdConfig,
    handler_from_columns,
)
from agrilease.models.handler import AdministratorHandler, DistributorHandler
from agrilease.utils.time import ensure_utc, utc_now

# Conditional updates re-read rows afterwards instead of patching the identity map.
_NO_SYNC = {"synchronize_session": False}


class DeviceRepository:
    """Repository for device operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        device_type: str | None,
        pincode: str | None,
        location: GeoPoint | None = None,
        requires_operator: bool = False,
        status: DeviceStatus = DeviceStatus.DRAFT,
    ) -> Device:
        """Create a new device."""
        now = utc_now()
        row = DeviceTable(
            device_id=uuid4(),
            name=name,
            device_type=device_type,
            pincode=pincode,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            status=status,
            requires_operator=requires_operator,
            current_lease_id=None,
            version=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, device_id: UUID) -> Device | None:
        """Get a device by ID, reading through the session identity map."""
        result = await self.session.execute(
            select(DeviceTable)
            .where(DeviceTable.device_id == device_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list_by_status(self, status: DeviceStatus) -> list[Device]:
        """List devices in a lifecycle status."""
        result = await self.session.execute(
            select(DeviceTable)
            .where(DeviceTable.status == status)
            .order_by(DeviceTable.created_at)
            .execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list(
        self,
        status: DeviceStatus | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Device]:
        """List devices, optionally by status and a name/type substring."""
        query = select(DeviceTable)
        if status is not None:
            query = query.where(DeviceTable.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(DeviceTable.name).like(pattern),
                    func.lower(DeviceTable.device_type).like(pattern),
                )
            )
        result = await self.session.execute(
            query.order_by(DeviceTable.created_at, DeviceTable.device_id)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def update_status(
        self, device_id: UUID, new_status: DeviceStatus, expected_version: int
    ) -> Device | None:
        """
        Change a device's status if nobody else wrote it since it was read.

        Returns None when the version no longer matches.
        """
        result = await self.session.execute(
            update(DeviceTable)
            .where(
                DeviceTable.device_id == device_id,
                DeviceTable.version == expected_version,
            )
            .values(status=new_status, version=expected_version + 1, updated_at=utc_now())
            .execution_options(**_NO_SYNC)
        )
        if result.rowcount == 0:
            return None
        return await self.get(device_id)

    async def assign_lease(self, device_id: UUID, lease_id: UUID, expected_version: int) -> bool:
        """
        Point a device at a lease.

        Applies only while the device carries no lease and its version is
        unchanged since it was read; False means another writer got there first.
        """
        result = await self.session.execute(
            update(DeviceTable)
            .where(
                DeviceTable.device_id == device_id,
                DeviceTable.current_lease_id.is_(None),
                DeviceTable.version == expected_version,
            )
            .values(
                current_lease_id=lease_id,
                version=expected_version + 1,
                updated_at=utc_now(),
            )
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount > 0

    async def release_lease(self, device_id: UUID, lease_id: UUID) -> bool:
        """Clear a device's lease reference if it still points at the given lease."""
        result = await self.session.execute(
            update(DeviceTable)
            .where(
                DeviceTable.device_id == device_id,
                DeviceTable.current_lease_id == lease_id,
            )
            .values(
                current_lease_id=None,
                version=DeviceTable.version + 1,
                updated_at=utc_now(),
            )
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount > 0

    def _row_to_model(self, row: DeviceTable) -> Device:
        location = None
        if row.latitude is not None and row.longitude is not None:
            location = GeoPoint(latitude=row.latitude, longitude=row.longitude)
        return Device(
            device_id=row.device_id,
            device_type=row.device_type,
            name=row.name,
            pincode=row.pincode,
            location=location,
            status=row.status,
            current_lease_id=row.current_lease_id,
            requires_operator=row.requires_operator,
            version=row.version,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )


class OrderRepository:
    """Repository for order operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        order_type: OrderType,
        device_id: UUID,
        requested_by: str,
        handler: AdministratorHandler | DistributorHandler,
        status: OrderStatus = OrderStatus.INTEREST_RAISED,
        requester_phone: str | None = None,
        requested_hours: float | None = None,
        requested_acres: float | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        note: str | None = None,
        intent_id: UUID | None = None,
    ) -> Order:
        """Create a new order."""
        now = utc_now()
        row = OrderTable(
            order_id=uuid4(),
            order_type=order_type,
            status=status,
            device_id=device_id,
            requested_by=requested_by,
            requester_phone=requester_phone,
            handler_kind=handler.handler_kind,
            handler_id=handler.handler_id,
            requested_hours=requested_hours,
            requested_acres=requested_acres,
            start_date=start_date,
            end_date=end_date,
            note=note,
            intent_id=intent_id,
            lease_id=None,
            version=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, order_id: UUID) -> Order | None:
        """Get an order by ID."""
        result = await self.session.execute(
            select(OrderTable)
            .where(OrderTable.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list(
        self,
        requested_by: str | None = None,
        order_type: OrderType | None = None,
        handler: AdministratorHandler | DistributorHandler | None = None,
        status: OrderStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        """List orders with optional filtering, newest first."""
        query = select(OrderTable)
        if requested_by is not None:
            query = query.where(OrderTable.requested_by == requested_by)
        if order_type is not None:
            query = query.where(OrderTable.order_type == order_type)
        if handler is not None:
            query = query.where(
                OrderTable.handler_kind == handler.handler_kind,
                OrderTable.handler_id == handler.handler_id,
            )
        if status is not None:
            query = query.where(OrderTable.status == status)

        query = (
            query.order_by(OrderTable.created_at.desc(), OrderTable.order_id)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def statuses_by_device(self, device_ids: Iterable[UUID]) -> dict[UUID, set[OrderStatus]]:
        """Collect the statuses of every order referencing each device."""
        ids = list(device_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(OrderTable.device_id, OrderTable.status).where(OrderTable.device_id.in_(ids))
        )
        statuses: dict[UUID, set[OrderStatus]] = {}
        for device_id, status in result.all():
            statuses.setdefault(device_id, set()).add(status)
        return statuses

    async def transition(
        self,
        order_id: UUID,
        from_status: OrderStatus,
        to_status: OrderStatus,
        expected_version: int,
        note: str | None = None,
    ) -> Order | None:
        """
        Move an order between states with a compare-and-set on status and version.

        A missing note keeps the existing one. Returns None if the order changed
        since it was read.
        """
        values: dict[str, Any] = {
            "status": to_status,
            "version": expected_version + 1,
            "updated_at": utc_now(),
        }
        if note is not None:
            values["note"] = note

        result = await self.session.execute(
            update(OrderTable)
            .where(
                OrderTable.order_id == order_id,
                OrderTable.status == from_status,
                OrderTable.version == expected_version,
            )
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        if result.rowcount == 0:
            return None
        return await self.get(order_id)

    async def attach_lease(self, order_id: UUID, lease_id: UUID, expected_version: int) -> bool:
        """Record the lease created from an ACCEPTED order, once."""
        result = await self.session.execute(
            update(OrderTable)
            .where(
                OrderTable.order_id == order_id,
                OrderTable.status == OrderStatus.ACCEPTED,
                OrderTable.lease_id.is_(None),
                OrderTable.version == expected_version,
            )
            .values(lease_id=lease_id, version=expected_version + 1, updated_at=utc_now())
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount > 0

    def _row_to_model(self, row: OrderTable) -> Order:
        return Order(
            order_id=row.order_id,
            order_type=row.order_type,
            status=row.status,
            device_id=row.device_id,
            requested_by=row.requested_by,
            requester_phone=row.requester_phone,
            handler=handler_from_columns(row.handler_kind, row.handler_id),
            requested_hours=row.requested_hours,
            requested_acres=row.requested_acres,
            start_date=row.start_date,
            end_date=row.end_date,
            note=row.note,
            intent_id=row.intent_id,
            lease_id=row.lease_id,
            version=row.version,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )


class LeaseRepository:
    """Repository for lease operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        device_id: UUID,
        order_id: UUID,
        distributor_id: str,
        commitment: Commitment,
        estimated_price: float | None = None,
        deposit_amount: float | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        operators: list[OperatorAssignment] | None = None,
        attachments: list[Attachment] | None = None,
        signed_by_admin_id: str | None = None,
        notes: str | None = None,
    ) -> Lease:
        """Create an ACTIVE lease."""
        now = utc_now()
        row = LeaseTable(
            lease_id=uuid4(),
            device_id=device_id,
            order_id=order_id,
            distributor_id=distributor_id,
            status=LeaseStatus.ACTIVE,
            commitment=commitment.model_dump(mode="json"),
            estimated_price=estimated_price,
            deposit_amount=deposit_amount,
            start_date=start_date,
            end_date=end_date,
            operators=[o.model_dump(mode="json") for o in operators or []],
            attachments=[a.model_dump(mode="json") for a in attachments or []],
            signed_by_admin_id=signed_by_admin_id,
            notes=notes,
            version=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, lease_id: UUID) -> Lease | None:
        """Get a lease by ID."""
        result = await self.session.execute(
            select(LeaseTable)
            .where(LeaseTable.lease_id == lease_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list_by_distributor(
        self, distributor_id: str, status: LeaseStatus | None = None
    ) -> list[Lease]:
        """List a distributor's leases, newest first."""
        query = select(LeaseTable).where(LeaseTable.distributor_id == distributor_id)
        if status is not None:
            query = query.where(LeaseTable.status == status)
        result = await self.session.execute(
            query.order_by(LeaseTable.created_at.desc()).execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def update_operators(
        self, lease_id: UUID, operators: list[OperatorAssignment], expected_version: int
    ) -> Lease | None:
        """
        Replace an ACTIVE lease's operator list.

        Returns None when the lease changed since it was read.
        """
        result = await self.session.execute(
            update(LeaseTable)
            .where(
                LeaseTable.lease_id == lease_id,
                LeaseTable.status == LeaseStatus.ACTIVE,
                LeaseTable.version == expected_version,
            )
            .values(
                operators=[o.model_dump(mode="json") for o in operators],
                version=expected_version + 1,
                updated_at=utc_now(),
            )
            .execution_options(**_NO_SYNC)
        )
        if result.rowcount == 0:
            return None
        return await self.get(lease_id)

    async def update_status(
        self,
        lease_id: UUID,
        from_status: LeaseStatus,
        to_status: LeaseStatus,
        note: str | None = None,
    ) -> Lease | None:
        """Move a lease between states; None if it left from_status meanwhile."""
        values: dict[str, Any] = {
            "status": to_status,
            "version": LeaseTable.version + 1,
            "updated_at": utc_now(),
        }
        if note is not None:
            values["notes"] = note
        result = await self.session.execute(
            update(LeaseTable)
            .where(LeaseTable.lease_id == lease_id, LeaseTable.status == from_status)
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        if result.rowcount == 0:
            return None
        return await self.get(lease_id)

    def _row_to_model(self, row: LeaseTable) -> Lease:
        return Lease(
            lease_id=row.lease_id,
            device_id=row.device_id,
            order_id=row.order_id,
            distributor_id=row.distributor_id,
            status=row.status,
            commitment=Commitment(**row.commitment),
            estimated_price=row.estimated_price,
            deposit_amount=row.deposit_amount,
            start_date=row.start_date,
            end_date=row.end_date,
            operators=[OperatorAssignment(**o) for o in row.operators or []],
            attachments=[Attachment(**a) for a in row.attachments or []],
            signed_by_admin_id=row.signed_by_admin_id,
            notes=row.notes,
            version=row.version,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )


class PricingRuleRepository:
    """Repository for pricing rule operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        device_type: str,
        pincode: str,
        rules: list[PricingRuleItem],
        effective_from: date,
        effective_to: date | None = None,
    ) -> PricingRule:
        """
        Insert an ACTIVE rule.

        Default rules claim the scope's default slot; a second default raises
        IntegrityError. The insert runs in a SAVEPOINT so that failure leaves
        the surrounding transaction usable.
        """
        row = PricingRuleTable(
            rule_id=uuid4(),
            device_type=device_type,
            pincode=pincode,
            rules=[item.model_dump(mode="json") for item in rules],
            effective_from=effective_from,
            effective_to=effective_to,
            status=RuleStatus.ACTIVE,
            default_slot=DEFAULT_SLOT if effective_to is None else None,
            created_at=utc_now(),
        )
        async with self.session.begin_nested():
            self.session.add(row)
            await self.session.flush()
        return self._row_to_model(row)

    async def get(self, rule_id: UUID) -> PricingRule | None:
        result = await self.session.execute(
            select(PricingRuleTable)
            .where(PricingRuleTable.rule_id == rule_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def get_default(self, device_type: str, pincode: str) -> PricingRule | None:
        """The ACTIVE open-ended rule for a scope."""
        result = await self.session.execute(
            select(PricingRuleTable)
            .where(
                PricingRuleTable.device_type == device_type,
                PricingRuleTable.pincode == pincode,
                PricingRuleTable.status == RuleStatus.ACTIVE,
                PricingRuleTable.effective_to.is_(None),
            )
            .order_by(PricingRuleTable.created_at)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def default_scopes(self, scopes: Iterable[tuple[str, str]]) -> set[tuple[str, str]]:
        """Return which (device type, pincode) scopes have an ACTIVE default rule."""
        wanted = set(scopes)
        if not wanted:
            return set()
        result = await self.session.execute(
            select(PricingRuleTable.device_type, PricingRuleTable.pincode).where(
                PricingRuleTable.device_type.in_(sorted({t for t, _ in wanted})),
                PricingRuleTable.status == RuleStatus.ACTIVE,
                PricingRuleTable.effective_to.is_(None),
            )
        )
        return {(t, p) for t, p in result.all() if (t, p) in wanted}

    async def list_covering(self, device_type: str, pincode: str, on_date: date) -> list[PricingRule]:
        """ACTIVE time-specific rules whose window contains a date, oldest window first."""
        result = await self.session.execute(
            select(PricingRuleTable)
            .where(
                PricingRuleTable.device_type == device_type,
                PricingRuleTable.pincode == pincode,
                PricingRuleTable.status == RuleStatus.ACTIVE,
                PricingRuleTable.effective_to.is_not(None),
                PricingRuleTable.effective_from <= on_date,
                PricingRuleTable.effective_to >= on_date,
            )
            .order_by(PricingRuleTable.effective_from, PricingRuleTable.created_at)
            .execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list_overlapping(
        self, device_type: str, pincode: str, start: date, end: date
    ) -> list[PricingRule]:
        """ACTIVE time-specific rules whose window intersects [start, end] inclusive."""
        result = await self.session.execute(
            select(PricingRuleTable)
            .where(
                PricingRuleTable.device_type == device_type,
                PricingRuleTable.pincode == pincode,
                PricingRuleTable.status == RuleStatus.ACTIVE,
                PricingRuleTable.effective_to.is_not(None),
                PricingRuleTable.effective_from <= end,
                PricingRuleTable.effective_to >= start,
            )
            .order_by(PricingRuleTable.effective_from)
            .execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list(
        self,
        device_type: str | None = None,
        pincode: str | None = None,
        status: RuleStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PricingRule]:
        query = select(PricingRuleTable)
        if device_type is not None:
            query = query.where(PricingRuleTable.device_type == device_type)
        if pincode is not None:
            query = query.where(PricingRuleTable.pincode == pincode)
        if status is not None:
            query = query.where(PricingRuleTable.status == status)
        result = await self.session.execute(
            query.order_by(PricingRuleTable.created_at.desc(), PricingRuleTable.rule_id)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def deactivate(self, rule_id: UUID) -> PricingRule | None:
        """Mark a rule INACTIVE and release its default slot."""
        await self.session.execute(
            update(PricingRuleTable)
            .where(PricingRuleTable.rule_id == rule_id)
            .values(status=RuleStatus.INACTIVE, default_slot=None)
            .execution_options(**_NO_SYNC)
        )
        return await self.get(rule_id)

    def _row_to_model(self, row: PricingRuleTable) -> PricingRule:
        return PricingRule(
            rule_id=row.rule_id,
            device_type=row.device_type,
            pincode=row.pincode,
            rules=[PricingRuleItem(**item) for item in row.rules],
            effective_from=row.effective_from,
            effective_to=row.effective_to,
            status=row.status,
            created_at=ensure_utc(row.created_at),
        )


class ThresholdConfigRepository:
    """Repository for threshold configs."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, device_type: str) -> ThresholdConfig | None:
        result = await self.session.execute(
            select(ThresholdConfigTable)
            .where(ThresholdConfigTable.device_type == device_type)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def get_active(self, device_type: str) -> ThresholdConfig | None:
        config = await self.get(device_type)
        if config is None or config.status != RuleStatus.ACTIVE:
            return None
        return config

    async def upsert(
        self,
        device_type: str,
        max_rental_hours: float,
        max_rental_acres: float,
        status: RuleStatus = RuleStatus.ACTIVE,
    ) -> ThresholdConfig:
        """Create or replace the config for a device type."""
        now = utc_now()
        row = await self.session.get(ThresholdConfigTable, device_type)
        if row is None:
            row = ThresholdConfigTable(device_type=device_type)
            self.session.add(row)
        row.max_rental_hours = max_rental_hours
        row.max_rental_acres = max_rental_acres
        row.status = status
        row.updated_at = now
        await self.session.flush()
        return self._row_to_model(row)

    def _row_to_model(self, row: ThresholdConfigTable) -> ThresholdConfig:
        return ThresholdConfig(
            device_type=row.device_type,
            max_rental_hours=row.max_rental_hours,
            max_rental_acres=row.max_rental_acres,
            status=row.status,
            updated_at=ensure_utc(row.updated_at),
        )


class DiscoveryIntentRepository:
    """Repository for discovery intents."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        device_id: UUID,
        expires_at: datetime,
        intent_type: OrderType | None = None,
        requested_hours: float | None = None,
        requested_acres: float | None = None,
    ) -> DiscoveryIntent:
        row = DiscoveryIntentTable(
            intent_id=uuid4(),
            device_id=device_id,
            intent_type=intent_type,
            requested_hours=requested_hours,
            requested_acres=requested_acres,
            status=IntentStatus.CREATED,
            expires_at=expires_at,
            created_at=utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, intent_id: UUID) -> DiscoveryIntent | None:
        result = await self.session.execute(
            select(DiscoveryIntentTable)
            .where(DiscoveryIntentTable.intent_id == intent_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def mark_consumed(self, intent_id: UUID) -> bool:
        result = await self.session.execute(
            update(DiscoveryIntentTable)
            .where(DiscoveryIntentTable.intent_id == intent_id)
            .values(status=IntentStatus.CONSUMED)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount > 0

    def _row_to_model(self, row: DiscoveryIntentTable) -> DiscoveryIntent:
        return DiscoveryIntent(
            intent_id=row.intent_id,
            device_id=row.device_id,
            intent_type=row.intent_type,
            requested_hours=row.requested_hours,
            requested_acres=row.requested_acres,
            status=row.status,
            expires_at=ensure_utc(row.expires_at),
            created_at=ensure_utc(row.created_at),
        )


class DistributorProfileRepository:
    """Repository for distributor profiles."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: str,
        name: str,
        pincode: str | None = None,
        distributor_id: str | None = None,
    ) -> DistributorProfile:
        row = DistributorProfileTable(
            distributor_id=distributor_id or str(uuid4()),
            user_id=user_id,
            name=name,
            pincode=pincode,
            created_at=utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, distributor_id: str) -> DistributorProfile | None:
        row = await self.session.get(DistributorProfileTable, distributor_id)
        return self._row_to_model(row) if row else None

    async def get_by_user_id(self, user_id: str) -> DistributorProfile | None:
        result = await self.session.execute(
            select(DistributorProfileTable).where(DistributorProfileTable.user_id == user_id)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    def _row_to_model(self, row: DistributorProfileTable) -> DistributorProfile:
        return DistributorProfile(
            distributor_id=row.distributor_id,
            user_id=row.user_id,
            name=row.name,
            pincode=row.pincode,
            created_at=ensure_utc(row.created_at),
        )


class AuditEventRepository:
    """Repository for audit events."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        entity_type: AuditEntityType,
        entity_id: str,
        action: AuditAction,
        actor_id: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        note: Optional[str] = None,
    ) -> AuditEvent:
        row = AuditEventTable(
            event_id=uuid4(),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            from_state=from_state,
            to_state=to_state,
            actor_id=actor_id,
            note=note,
            created_at=utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def list_for_entity(
        self, entity_type: AuditEntityType, entity_id: str, limit: int = 50
    ) -> list[AuditEvent]:
        """Audit trail of an entity, oldest first."""
        result = await self.session.execute(
            select(AuditEventTable)
            .where(
                AuditEventTable.entity_type == entity_type,
                AuditEventTable.entity_id == entity_id,
            )
            .order_by(AuditEventTable.created_at)
            .limit(limit)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    def _row_to_model(self, row: AuditEventTable) -> AuditEvent:
        return AuditEvent(
            event_id=row.event_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            action=row.action,
            from_state=row.from_state,
            to_state=row.to_state,
            actor_id=row.actor_id,
            note=row.note,
            created_at=ensure_utc(row.created_at),
        )
