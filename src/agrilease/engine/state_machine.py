"""Order lifecycle state machine."""

from typing import ClassVar, Optional

from agrilease.engine.errors import InvalidStateTransition
from agrilease.models.enums import OrderStatus


class OrderStateMachine:
    """
    Allowed order status moves.

    Pure and stateless: every question is answered from the transition
    table alone. Terminal states (CLOSED, REJECTED, CANCELLED) have no
    outgoing edges.
    """

    TRANSITIONS: ClassVar[dict[OrderStatus, frozenset[OrderStatus]]] = {
        OrderStatus.DRAFT: frozenset({OrderStatus.INTEREST_RAISED}),
        OrderStatus.INTEREST_RAISED: frozenset(
            {
                OrderStatus.UNDER_REVIEW,
                OrderStatus.ACCEPTED,
                OrderStatus.REJECTED,
                OrderStatus.CANCELLED,
            }
        ),
        OrderStatus.UNDER_REVIEW: frozenset({OrderStatus.ACCEPTED, OrderStatus.REJECTED}),
        OrderStatus.ACCEPTED: frozenset({OrderStatus.PICKUP_SCHEDULED}),
        OrderStatus.PICKUP_SCHEDULED: frozenset({OrderStatus.ACTIVE}),
        OrderStatus.ACTIVE: frozenset({OrderStatus.COMPLETED}),
        OrderStatus.COMPLETED: frozenset({OrderStatus.CLOSED}),
        OrderStatus.CLOSED: frozenset(),
        OrderStatus.REJECTED: frozenset(),
        OrderStatus.CANCELLED: frozenset(),
    }

    @classmethod
    def can_transition(
        cls, from_status: Optional[OrderStatus], to_status: Optional[OrderStatus]
    ) -> bool:
        if from_status is None or to_status is None or from_status == to_status:
            return False
        if from_status.is_terminal():
            return False
        return to_status in cls.TRANSITIONS.get(from_status, frozenset())

    @classmethod
    def allowed_next_states(cls, status: Optional[OrderStatus]) -> frozenset[OrderStatus]:
        if status is None:
            return frozenset()
        return cls.TRANSITIONS.get(status, frozenset())

    @staticmethod
    def is_terminal(status: Optional[OrderStatus]) -> bool:
        return status is not None and status.is_terminal()

    @classmethod
    def validate(cls, from_status: OrderStatus, to_status: OrderStatus) -> None:
        """Raise InvalidStateTransition unless the move is in the table."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransition(from_status, to_status)
