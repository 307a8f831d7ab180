"""AgriLease enumerations."""

from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle status."""

    DRAFT = "draft"
    INTEREST_RAISED = "interest_raised"
    UNDER_REVIEW = "under_review"
    ACCEPTED = "accepted"
    PICKUP_SCHEDULED = "pickup_scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CLOSED = "closed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @classmethod
    def terminal_states(cls) -> set["OrderStatus"]:
        """Return terminal states."""
        return {cls.CLOSED, cls.REJECTED, cls.CANCELLED}

    @classmethod
    def committed_states(cls) -> set["OrderStatus"]:
        """States representing committed or in-progress use of a device."""
        return {cls.ACCEPTED, cls.PICKUP_SCHEDULED, cls.ACTIVE, cls.COMPLETED}

    def is_terminal(self) -> bool:
        """Check if status is terminal."""
        return self in self.terminal_states()


class OrderType(str, Enum):
    """Kind of order; fixes who handles it."""

    LEASE = "lease"  # distributor <-> platform, administrator-handled
    RENT = "rent"  # farmer <-> distributor, distributor-handled


class UserRole(str, Enum):
    """Roles a caller may hold."""

    FARMER = "farmer"
    DISTRIBUTOR = "distributor"
    OPERATOR = "operator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class HandlerKind(str, Enum):
    """Kind of party responsible for an order."""

    ADMINISTRATOR = "administrator"
    DISTRIBUTOR = "distributor"


class DeviceStatus(str, Enum):
    """Device lifecycle status."""

    DRAFT = "draft"
    ONBOARDED = "onboarded"
    LIVE = "live"
    NOT_LIVE = "not_live"
    UNDER_MAINTENANCE = "under_maintenance"
    RETIRED = "retired"


class OnboardingAction(str, Enum):
    """Finalization step for a device being onboarded."""

    ONBOARD = "onboard"
    TAKE_LIVE = "take_live"


class LeaseStatus(str, Enum):
    """Lease lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"

    @classmethod
    def terminal_states(cls) -> set["LeaseStatus"]:
        return {cls.COMPLETED, cls.TERMINATED}

    def is_terminal(self) -> bool:
        return self in self.terminal_states()


class PricingMetric(str, Enum):
    """Unit a pricing rate applies to."""

    PER_HOUR = "per_hour"
    PER_ACRE = "per_acre"


class CommitmentType(str, Enum):
    """Unit of a lease commitment."""

    HOURS = "hours"
    ACRES = "acres"


class OperatorRole(str, Enum):
    """Role of an operator assigned to a lease."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class DocumentType(str, Enum):
    """Kind of document attached to a lease."""

    LEASE_AGREEMENT = "lease_agreement"
    TRAINING_CERT = "training_cert"
    IDENTITY_PROOF = "identity_proof"
    OTHER = "other"


class RuleStatus(str, Enum):
    """Pricing rule / threshold config status."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class IntentStatus(str, Enum):
    """Discovery intent status."""

    CREATED = "created"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class LeaseState(str, Enum):
    """Lease visibility of a device in discovery results."""

    LEASED = "leased"
    AVAILABLE = "available"


class NotificationEvent(str, Enum):
    """Events that produce notifications."""

    ORDER_CREATED = "order.created"
    ORDER_STATUS_UPDATED = "order.status_updated"
    ORDER_CANCELLED = "order.cancelled"
    ORDER_REJECTED = "order.rejected"
    LEASE_CREATED = "lease.created"
    LEASE_STATUS_UPDATED = "lease.status_updated"
    OPERATOR_ASSIGNED = "operator.assigned"


class RecipientRole(str, Enum):
    """Who a notification is addressed to."""

    ADMINISTRATOR = "administrator"
    REQUESTER = "requester"
    HANDLER = "handler"
    DISTRIBUTOR = "distributor"
    OPERATOR = "operator"


class AuditEntityType(str, Enum):
    """Entities that carry an audit trail."""

    ORDER = "order"
    LEASE = "lease"
    DEVICE = "device"


class AuditAction(str, Enum):
    """Audited actions."""

    STATUS_CHANGED = "status_changed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    CREATED = "created"
    OPERATOR_ASSIGNED = "operator_assigned"
