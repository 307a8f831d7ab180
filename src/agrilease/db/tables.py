"""SQLAlchemy table definitions."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from agrilease.db.base import Base
from agrilease.models.enums import (
    AuditAction,
    AuditEntityType,
    DeviceStatus,
    HandlerKind,
    IntentStatus,
    LeaseStatus,
    OrderStatus,
    OrderType,
    RuleStatus,
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Value stored in pricing_rules.default_slot for the ACTIVE default rule of a scope.
DEFAULT_SLOT = "default"


class DeviceTable(Base):
    """Devices table - physical equipment units."""

    __tablename__ = "devices"

    device_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    device_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    pincode: Mapped[str | None] = mapped_column(String(12), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[DeviceStatus] = mapped_column(
        Enum(DeviceStatus), nullable=False, default=DeviceStatus.DRAFT
    )
    requires_operator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Written only through conditional updates in DeviceRepository
    current_lease_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_devices_status", "status"),
        Index("idx_devices_scope", "device_type", "pincode"),
    )


class OrderTable(Base):
    """Orders table - lease and rent requests."""

    __tablename__ = "orders"

    order_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    order_type: Mapped[OrderType] = mapped_column(Enum(OrderType), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), nullable=False)
    device_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("devices.device_id"), nullable=False
    )

    requested_by: Mapped[str] = mapped_column(String(255), nullable=False)
    requester_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Handler is fixed at creation
    handler_kind: Mapped[HandlerKind] = mapped_column(Enum(HandlerKind), nullable=False)
    handler_id: Mapped[str] = mapped_column(String(255), nullable=False)

    requested_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    requested_acres: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    intent_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    lease_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_orders_device", "device_id"),
        Index("idx_orders_requester", "requested_by"),
        Index("idx_orders_handler", "handler_kind", "handler_id"),
    )


class LeaseTable(Base):
    """Leases table - equipment control granted to distributors."""

    __tablename__ = "leases"

    lease_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    device_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("devices.device_id"), nullable=False
    )
    order_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("orders.order_id"), nullable=False, unique=True
    )
    distributor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[LeaseStatus] = mapped_column(Enum(LeaseStatus), nullable=False)

    commitment: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    estimated_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    deposit_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    operators: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    signed_by_admin_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_leases_distributor", "distributor_id", "status"),
        Index("idx_leases_device", "device_id"),
    )


class PricingRuleTable(Base):
    """Pricing rules table - rates per (device type, pincode) and validity window."""

    __tablename__ = "pricing_rules"

    rule_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    device_type: Mapped[str] = mapped_column(String(100), nullable=False)
    pincode: Mapped[str] = mapped_column(String(12), nullable=False)
    rules: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[RuleStatus] = mapped_column(
        Enum(RuleStatus), nullable=False, default=RuleStatus.ACTIVE
    )

    # DEFAULT_SLOT only while this is the scope's active default rule, otherwise NULL.
    # NULLs never collide, so the unique constraint admits one default per scope.
    default_slot: Mapped[str | None] = mapped_column(String(16), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "device_type", "pincode", "default_slot", name="uq_pricing_rules_default"
        ),
        Index("idx_pricing_rules_scope", "device_type", "pincode", "status"),
    )


class ThresholdConfigTable(Base):
    """Threshold configs table - rental limits per device type."""

    __tablename__ = "threshold_configs"

    device_type: Mapped[str] = mapped_column(String(100), primary_key=True)
    max_rental_hours: Mapped[float] = mapped_column(Float, nullable=False)
    max_rental_acres: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[RuleStatus] = mapped_column(
        Enum(RuleStatus), nullable=False, default=RuleStatus.ACTIVE
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DiscoveryIntentTable(Base):
    """Discovery intents table - short-lived interest records."""

    __tablename__ = "discovery_intents"

    intent_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    device_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("devices.device_id"), nullable=False
    )
    intent_type: Mapped[OrderType | None] = mapped_column(Enum(OrderType), nullable=True)
    requested_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    requested_acres: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[IntentStatus] = mapped_column(Enum(IntentStatus), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DistributorProfileTable(Base):
    """Distributor profiles table - distributor id to owning user."""

    __tablename__ = "distributor_profiles"

    distributor_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    pincode: Mapped[str | None] = mapped_column(String(12), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditEventTable(Base):
    """Audit events table - state change trail."""

    __tablename__ = "audit_events"

    event_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    entity_type: Mapped[AuditEntityType] = mapped_column(Enum(AuditEntityType), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False)
    from_state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id", "created_at"),
    )
