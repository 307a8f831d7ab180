"""AgriLease data models."""

from agrilease.models.audit import AuditEvent
from agrilease.models.context import RequestContext
from agrilease.models.device import Device, GeoPoint
from agrilease.models.distributor import DistributorProfile
from agrilease.models.document import DocumentUploader, UploadedDocument
from agrilease.models.enums import (
    AuditAction,
    AuditEntityType,
    CommitmentType,
    DeviceStatus,
    DocumentType,
    HandlerKind,
    IntentStatus,
    LeaseState,
    LeaseStatus,
    NotificationEvent,
    OnboardingAction,
    OperatorRole,
    OrderStatus,
    OrderType,
    PricingMetric,
    RecipientRole,
    RuleStatus,
    UserRole,
)
from agrilease.models.handler import (
    ADMINISTRATOR_HANDLER_ID,
    AdministratorHandler,
    DistributorHandler,
    Handler,
    handler_from_columns,
)
from agrilease.models.intent import DiscoveryIntent
from agrilease.models.lease import Attachment, Commitment, Lease, OperatorAssignment
from agrilease.models.order import Order, OrderRequest
from agrilease.models.pricing import (
    PricingRule,
    PricingRuleDraft,
    PricingRuleItem,
    ThresholdConfig,
)

__all__ = [
    "ADMINISTRATOR_HANDLER_ID",
    "AdministratorHandler",
    "Attachment",
    "AuditAction",
    "AuditEntityType",
    "AuditEvent",
    "Commitment",
    "CommitmentType",
    "Device",
    "DeviceStatus",
    "DiscoveryIntent",
    "DistributorHandler",
    "DistributorProfile",
    "DocumentType",
    "DocumentUploader",
    "GeoPoint",
    "Handler",
    "HandlerKind",
    "IntentStatus",
    "Lease",
    "LeaseState",
    "LeaseStatus",
    "NotificationEvent",
    "OnboardingAction",
    "OperatorAssignment",
    "OperatorRole",
    "Order",
    "OrderRequest",
    "OrderStatus",
    "OrderType",
    "PricingMetric",
    "PricingRule",
    "PricingRuleDraft",
    "PricingRuleItem",
    "RecipientRole",
    "RequestContext",
    "RuleStatus",
    "ThresholdConfig",
    "UploadedDocument",
    "UserRole",
    "handler_from_columns",
]
