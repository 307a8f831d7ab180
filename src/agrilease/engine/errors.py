"""AgriLease engine errors."""

from typing import Any


class AgriLeaseError(Exception):
    """Base error for AgriLease operations."""

    status_code = 400

    def __init__(self, message: str, code: str = "AGRILEASE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


# NotFound ------------------------------------------------------------------


class NotFoundError(AgriLeaseError):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity.replace('_', ' ').capitalize()} not found: {entity_id}",
            f"{entity.upper()}_NOT_FOUND",
        )
        self.entity_id = entity_id


class OrderNotFound(NotFoundError):
    def __init__(self, order_id: Any):
        super().__init__("order", order_id)


class DeviceNotFound(NotFoundError):
    def __init__(self, device_id: Any):
        super().__init__("device", device_id)


class LeaseNotFound(NotFoundError):
    def __init__(self, lease_id: Any):
        super().__init__("lease", lease_id)


class PricingRuleNotFound(NotFoundError):
    def __init__(self, rule_id: Any):
        super().__init__("pricing_rule", rule_id)


class DistributorProfileNotFound(NotFoundError):
    def __init__(self, key: Any):
        super().__init__("distributor_profile", key)


class ThresholdConfigNotFound(NotFoundError):
    def __init__(self, device_type: str):
        super().__init__("threshold_config", device_type)


class IntentNotFound(NotFoundError):
    def __init__(self, intent_id: Any):
        super().__init__("intent", intent_id)


# InvalidTransition ---------------------------------------------------------


class InvalidStateTransition(AgriLeaseError):
    """The state machine rejects the move."""

    status_code = 409

    def __init__(self, current_status: Any, requested_status: Any):
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        super().__init__(
            f"Invalid transition from {current} to {requested}",
            "INVALID_STATE_TRANSITION",
        )
        self.current_status = current_status
        self.requested_status = requested_status


# Forbidden -----------------------------------------------------------------


class ForbiddenError(AgriLeaseError):
    """Caller is not the resolved handler or requester."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, "FORBIDDEN")


class AuthenticationRequired(ForbiddenError):
    def __init__(self):
        super().__init__("Authentication required")
        self.code = "AUTHENTICATION_REQUIRED"


# PreconditionFailed --------------------------------------------------------


class PreconditionFailed(AgriLeaseError):
    """Entity state does not allow the operation."""

    status_code = 412

    def __init__(self, message: str, code: str = "PRECONDITION_FAILED"):
        super().__init__(message, code)


class DeviceAlreadyLeased(PreconditionFailed):
    def __init__(self, device_id: Any):
        super().__init__(f"Device already leased: {device_id}", "DEVICE_ALREADY_LEASED")
        self.device_id = device_id


class DeviceNotLeased(PreconditionFailed):
    def __init__(self, device_id: Any):
        super().__init__(f"Device not leased: {device_id}", "DEVICE_NOT_LEASED")
        self.device_id = device_id


class DeviceNotOrderable(PreconditionFailed):
    def __init__(self, device_id: Any, status: Any):
        super().__init__(
            f"Device {device_id} is not available for orders (status: {getattr(status, 'value', status)})",
            "DEVICE_NOT_ORDERABLE",
        )
        self.device_id = device_id


class DeviceNotVisible(PreconditionFailed):
    def __init__(self, device_id: Any):
        super().__init__(f"Device is not available for viewing: {device_id}", "DEVICE_NOT_VISIBLE")
        self.device_id = device_id


class DeviceRetired(PreconditionFailed):
    def __init__(self, device_id: Any):
        super().__init__(f"Device is retired: {device_id}", "DEVICE_RETIRED")
        self.device_id = device_id


class PricingRuleRequired(PreconditionFailed):
    def __init__(self, device_type: Any, pincode: Any):
        super().__init__(
            f"A default pricing rule is required for {device_type} in pincode {pincode}",
            "PRICING_RULE_REQUIRED",
        )


class DuplicateDefaultRule(PreconditionFailed):
    def __init__(self, device_type: str, pincode: str):
        super().__init__(
            f"A default pricing rule already exists for {device_type} in pincode {pincode}",
            "DUPLICATE_DEFAULT_RULE",
        )
        self.device_type = device_type
        self.pincode = pincode


class OrderNotLeaseable(PreconditionFailed):
    def __init__(self, order_id: Any, reason: str):
        super().__init__(f"Order {order_id} cannot create a lease: {reason}", "ORDER_NOT_LEASEABLE")
        self.order_id = order_id


# ValidationFailed ----------------------------------------------------------


class ValidationFailed(AgriLeaseError):
    """Missing or malformed input."""

    status_code = 422

    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_FAILED")


# Conflict ------------------------------------------------------------------


class ConcurrentModification(AgriLeaseError):
    """An optimistic check lost a race; the whole operation may be retried."""

    status_code = 409

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"Concurrent modification of {entity} {entity_id}; retry the operation",
            "CONFLICT",
        )
        self.entity = entity
        self.entity_id = entity_id


# Upload --------------------------------------------------------------------


class UploadFailed(AgriLeaseError):
    """Document storage rejected or failed an upload."""

    status_code = 502

    def __init__(self, message: str):
        super().__init__(message, "UPLOAD_FAILED")
