"""
Pytest fixtures for AgriLease tests.
"""

import os
from datetime import date
from typing import Any, Optional, Sequence

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Ensure test config is set before importing agrilease modules.
os.environ.setdefault("AGRILEASE_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("AGRILEASE_ENV", "development")
os.environ.setdefault("AGRILEASE_DATABASE_URL", "sqlite+aiosqlite:///./agrilease_test.db")

from agrilease.db import base as db_base
from agrilease.db.base import Base, build_engine
from agrilease.db.repositories import (
    DeviceRepository,
    DistributorProfileRepository,
    LeaseRepository,
    OrderRepository,
    PricingRuleRepository,
    ThresholdConfigRepository,
)
from agrilease.engine import AgriLeaseEngine
from agrilease.events.dispatcher import EventDispatcher
from agrilease.models import (
    AdministratorHandler,
    Commitment,
    Device,
    DeviceStatus,
    DistributorProfile,
    GeoPoint,
    Lease,
    Order,
    OrderStatus,
    OrderType,
    PricingMetric,
    PricingRule,
    PricingRuleItem,
    RequestContext,
    UploadedDocument,
    UserRole,
)
from agrilease.observability.metrics import metrics
import agrilease.db.tables  # noqa: F401

pytest_plugins = ("pytest_asyncio",)

TRACTOR = "tractor"
PINCODE = "560001"
# Bengaluru; devices are seeded around this point
ORIGIN = (12.9716, 77.5946)


# ============================================================================
# Identities
# ============================================================================


def make_ctx(
    user_id: Optional[str],
    role: Optional[UserRole] = None,
    phone: Optional[str] = None,
) -> RequestContext:
    if user_id is None:
        return RequestContext.anonymous()
    return RequestContext(
        user_id=user_id,
        active_role=role,
        roles=frozenset({role}) if role else frozenset(),
        phone=phone,
    )


@pytest.fixture
def admin_ctx() -> RequestContext:
    return make_ctx("admin-1", UserRole.ADMIN, "9000000001")


@pytest.fixture
def farmer_ctx() -> RequestContext:
    return make_ctx("farmer-1", UserRole.FARMER, "9876543210")


@pytest.fixture
def distributor_ctx() -> RequestContext:
    return make_ctx("dist-user-1", UserRole.DISTRIBUTOR, "9123456789")


# ============================================================================
# Side-effect doubles
# ============================================================================


class RecordingAuditSink:
    def __init__(self) -> None:
        self.records: list[Any] = []

    async def log_event(self, record) -> None:
        self.records.append(record)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple] = []

    async def notify(self, event, recipient_role, payload) -> None:
        self.sent.append((event, recipient_role, payload))


class RecordingUploader:
    """Document storage that keeps uploads in memory."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, list[UploadedDocument]]] = []
        self.discarded: list[str] = []

    async def upload(
        self, scope: str, entity_id: str, files: Sequence[UploadedDocument]
    ) -> list[str]:
        self.calls.append((scope, entity_id, list(files)))
        return [f"memory://{scope}/{entity_id}/{i}/{f.filename}" for i, f in enumerate(files)]

    async def discard(self, urls: Sequence[str]) -> None:
        self.discarded.extend(urls)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(audit_sink, notifier) -> EventDispatcher:
    return EventDispatcher(audit_sink=audit_sink, notifier=notifier, max_queue_size=1000)


@pytest.fixture
def uploader() -> RecordingUploader:
    return RecordingUploader()


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine wired into agrilease.db.base."""
    original_engine = db_base.engine
    original_factory = db_base.async_session_factory

    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'agrilease.db'}")
    db_base.engine = test_engine
    db_base.async_session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()
    db_base.engine = original_engine
    db_base.async_session_factory = original_factory


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    """Provide a database session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_engine(session, dispatcher, uploader):
    """Build an AgriLeaseEngine, on the test session unless another is given."""

    def _make(other_session: Optional[AsyncSession] = None, **kwargs) -> AgriLeaseEngine:
        return AgriLeaseEngine(
            other_session or session, dispatcher=dispatcher, uploader=uploader, **kwargs
        )

    return _make


# ============================================================================
# Seed data
# ============================================================================


class Seeder:
    """Writes fixture rows straight through the repositories."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.devices = DeviceRepository(session)
        self.orders = OrderRepository(session)
        self.leases = LeaseRepository(session)
        self.rules = PricingRuleRepository(session)
        self.profiles = DistributorProfileRepository(session)
        self.thresholds = ThresholdConfigRepository(session)

    async def device(
        self,
        status: DeviceStatus = DeviceStatus.LIVE,
        device_type: Optional[str] = TRACTOR,
        pincode: Optional[str] = PINCODE,
        latitude: float = ORIGIN[0],
        longitude: float = ORIGIN[1],
        name: str = "Mahindra 575",
    ) -> Device:
        return await self.devices.create(
            name=name,
            device_type=device_type,
            pincode=pincode,
            location=GeoPoint(latitude=latitude, longitude=longitude),
            status=status,
        )

    async def default_rule(
        self,
        device_type: str = TRACTOR,
        pincode: str = PINCODE,
        hourly: float = 500.0,
        per_acre: Optional[float] = None,
        effective_from: date = date(2024, 1, 1),
    ) -> PricingRule:
        existing = await self.rules.get_default(device_type, pincode)
        if existing is not None:
            return existing
        items = [PricingRuleItem(metric=PricingMetric.PER_HOUR, rate=hourly)]
        if per_acre is not None:
            items.append(PricingRuleItem(metric=PricingMetric.PER_ACRE, rate=per_acre))
        return await self.rules.create(device_type, pincode, items, effective_from)

    async def windowed_rule(
        self,
        start: date,
        end: date,
        hourly: float,
        device_type: str = TRACTOR,
        pincode: str = PINCODE,
    ) -> PricingRule:
        return await self.rules.create(
            device_type,
            pincode,
            [PricingRuleItem(metric=PricingMetric.PER_HOUR, rate=hourly)],
            start,
            end,
        )

    async def priced_device(self, **kwargs) -> Device:
        device = await self.device(**kwargs)
        if device.has_pricing_scope:
            await self.default_rule(device.device_type, device.pincode)
        return device

    async def distributor(
        self, user_id: str = "dist-user-1", name: str = "Green Fields Agro"
    ) -> DistributorProfile:
        existing = await self.profiles.get_by_user_id(user_id)
        if existing is not None:
            return existing
        return await self.profiles.create(user_id=user_id, name=name, pincode=PINCODE)

    async def threshold(
        self, device_type: str = TRACTOR, max_hours: float = 8.0, max_acres: float = 5.0
    ):
        return await self.thresholds.upsert(device_type, max_hours, max_acres)

    async def order(
        self,
        device: Device,
        order_type: OrderType = OrderType.LEASE,
        status: OrderStatus = OrderStatus.INTEREST_RAISED,
        requested_by: str = "dist-user-1",
        handler=None,
        requested_hours: Optional[float] = 40.0,
        note: Optional[str] = None,
    ) -> Order:
        return await self.orders.create(
            order_type=order_type,
            device_id=device.device_id,
            requested_by=requested_by,
            handler=handler or AdministratorHandler(),
            status=status,
            requester_phone="9123456789",
            requested_hours=requested_hours,
            note=note,
        )

    async def leased_device(self, distributor: DistributorProfile, **kwargs) -> tuple[Device, Lease]:
        """A LIVE priced device already leased to a distributor."""
        device = await self.priced_device(**kwargs)
        order = await self.order(
            device, status=OrderStatus.ACCEPTED, requested_by=distributor.user_id
        )
        lease = await self.leases.create(
            device_id=device.device_id,
            order_id=order.order_id,
            distributor_id=distributor.distributor_id,
            commitment=Commitment(value=40.0),
        )
        assert await self.devices.assign_lease(device.device_id, lease.lease_id, device.version)
        assert await self.orders.attach_lease(order.order_id, lease.lease_id, order.version)
        return await self.devices.get(device.device_id), lease

    async def move_order(self, order_id, to_status: OrderStatus) -> Order:
        """Force an order into a status, bypassing the state machine."""
        order = await self.orders.get(order_id)
        moved = await self.orders.transition(order_id, order.status, to_status, order.version)
        assert moved is not None
        return moved

    async def commit(self) -> None:
        await self.session.commit()


@pytest.fixture
def seed(session) -> Seeder:
    return Seeder(session)


# ============================================================================
# API
# ============================================================================


@pytest.fixture
async def client(engine, dispatcher, uploader):
    """Async test client with overridden dependencies."""
    from agrilease.api.deps import get_dispatcher, get_uploader, verify_api_key
    from agrilease.main import app

    async def override_verify_api_key():
        return None

    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_uploader] = lambda: uploader
    app.dependency_overrides[verify_api_key] = override_verify_api_key

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
