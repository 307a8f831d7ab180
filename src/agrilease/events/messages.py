"""Notification message texts."""

from typing import Any

from agrilease.models.enums import NotificationEvent, RecipientRole


def _short(value: Any) -> str:
    return str(value)[:8] if value else "N/A"


def _or_na(value: Any) -> Any:
    return value if value is not None else "N/A"


def render_message(
    event: NotificationEvent, recipient_role: RecipientRole, payload: dict[str, Any]
) -> str:
    """Build the SMS text for an event as seen by one recipient."""
    order = _short(payload.get("order_id"))
    lease = _short(payload.get("lease_id"))
    device = _short(payload.get("device_id"))
    quantity = f"{_or_na(payload.get('requested_hours'))} hours / {_or_na(payload.get('requested_acres'))} acres"

    if event == NotificationEvent.ORDER_CREATED:
        kind = str(payload.get("order_type", "")).upper()
        if recipient_role == RecipientRole.REQUESTER:
            return (
                f"Your {kind} order #{order} has been submitted. Device: {device}, "
                f"Requested: {quantity}. It will be reviewed shortly."
            )
        return f"New {kind} order #{order}. Device: {device}, Requested: {quantity}. Please review."

    if event == NotificationEvent.ORDER_STATUS_UPDATED:
        prefix = "Your order" if recipient_role == RecipientRole.REQUESTER else "Order"
        return (
            f"{prefix} #{order} status updated: "
            f"{payload.get('previous_status')} -> {payload.get('status')}"
        )

    if event == NotificationEvent.ORDER_CANCELLED:
        return f"Order #{order} has been cancelled by the requester."

    if event == NotificationEvent.ORDER_REJECTED:
        reason = payload.get("note") or "No reason provided"
        return f"Your order #{order} has been rejected. Reason: {reason}"

    if event == NotificationEvent.LEASE_CREATED:
        return (
            f"Lease #{lease} created. Device: {device}, "
            f"Start: {_or_na(payload.get('start_date'))}, End: {_or_na(payload.get('end_date'))}."
        )

    if event == NotificationEvent.LEASE_STATUS_UPDATED:
        return (
            f"Lease #{lease} status updated: "
            f"{payload.get('previous_status')} -> {payload.get('status')}"
        )

    if event == NotificationEvent.OPERATOR_ASSIGNED:
        return f"You have been assigned as {payload.get('role', 'an')} operator to lease #{lease}. Device: {device}"

    return f"{event.value}: {payload}"
