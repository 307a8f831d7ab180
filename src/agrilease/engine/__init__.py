"""AgriLease engine - order lifecycle, leases, discovery and pricing."""

from agrilease.engine.core import AgriLeaseEngine
from agrilease.engine.errors import (
    AgriLeaseError,
    ConcurrentModification,
    ForbiddenError,
    InvalidStateTransition,
    NotFoundError,
    PreconditionFailed,
    ValidationFailed,
)
from agrilease.engine.state_machine import OrderStateMachine

__all__ = [
    "AgriLeaseEngine",
    "AgriLeaseError",
    "ConcurrentModification",
    "ForbiddenError",
    "InvalidStateTransition",
    "NotFoundError",
    "OrderStateMachine",
    "PreconditionFailed",
    "ValidationFailed",
]
