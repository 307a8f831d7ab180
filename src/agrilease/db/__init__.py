"""AgriLease database layer."""

from agrilease.db.base import Base, close_db, get_session, init_db
from agrilease.db.tables import (
    AuditEventTable,
    DeviceTable,
    DiscoveryIntentTable,
    DistributorProfileTable,
    LeaseTable,
    OrderTable,
    PricingRuleTable,
    ThresholdConfigTable,
)

__all__ = [
    "AuditEventTable",
    "Base",
    "DeviceTable",
    "DiscoveryIntentTable",
    "DistributorProfileTable",
    "LeaseTable",
    "OrderTable",
    "PricingRuleTable",
    "ThresholdConfigTable",
    "close_db",
    "get_session",
    "init_db",
]
