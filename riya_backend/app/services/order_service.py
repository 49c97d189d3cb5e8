"""
services/order_service.py — Order status and payment status write path.

Only the parts of order handling that generate polling events live here:
creating an order, reading it back, and moving its order/payment status.

Status machine:
  pending    → confirmed | cancelled
  confirmed  → processing | cancelled
  processing → shipped | cancelled
  shipped    → delivered
  delivered  → refunded
  cancelled, refunded are terminal

Notifications:
  Status changes do not write notifications themselves. They return a
  NotificationDraft; the route commits the order change first and then
  hands the draft to polling_service.record_notification(). A failed
  notification write therefore never rolls back the order change.

Layer rules:
  - No Flask imports. Commits are the route's responsibility; only flush here.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from riya_backend.app.errors import AppError, ErrorCode, forbidden
from riya_backend.app.models.notification import TYPE_ORDER_STATUS, TYPE_PAYMENT_STATUS
from riya_backend.app.models.order import (
    ORDER_STATUSES,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
    PAYMENT_STATUSES,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_DELIVERED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_REFUNDED,
    STATUS_SHIPPED,
    Order,
)
from riya_backend.app.models.user import ADMIN_ROLES
from riya_backend.app.time_utils import to_iso, utcnow

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "RC"
_ORDER_NUMBER_ATTEMPTS = 5

VALID_TRANSITIONS: dict[str, tuple[str, ...]] = {
    STATUS_PENDING:    (STATUS_CONFIRMED, STATUS_CANCELLED),
    STATUS_CONFIRMED:  (STATUS_PROCESSING, STATUS_CANCELLED),
    STATUS_PROCESSING: (STATUS_SHIPPED, STATUS_CANCELLED),
    STATUS_SHIPPED:    (STATUS_DELIVERED,),
    STATUS_DELIVERED:  (STATUS_REFUNDED,),
    STATUS_CANCELLED:  (),
    STATUS_REFUNDED:   (),
}

_ORDER_STATUS_TITLES = {
    STATUS_CONFIRMED:  "Order Confirmed",
    STATUS_PROCESSING: "Order Processing",
    STATUS_SHIPPED:    "Order Shipped",
    STATUS_DELIVERED:  "Order Delivered",
    STATUS_CANCELLED:  "Order Cancelled",
    STATUS_REFUNDED:   "Order Refunded",
}

_ORDER_STATUS_MESSAGES = {
    STATUS_PENDING:    "Your order {number} is pending confirmation.",
    STATUS_CONFIRMED:  "Your order {number} has been confirmed and is being prepared.",
    STATUS_PROCESSING: "Your order {number} is currently being processed.",
    STATUS_SHIPPED:    "Great news! Your order {number} has been shipped and is on its way.",
    STATUS_DELIVERED:  "Your order {number} has been delivered successfully.",
    STATUS_CANCELLED:  "Your order {number} has been cancelled.",
    STATUS_REFUNDED:   "Your order {number} has been refunded.",
}

_PAYMENT_TITLES = {
    PAYMENT_COMPLETED: "Payment Completed",
    PAYMENT_FAILED:    "Payment Failed",
    PAYMENT_REFUNDED:  "Payment Refunded",
}

_PAYMENT_MESSAGES = {
    PAYMENT_COMPLETED: "Payment for order {number} has been completed successfully.",
    PAYMENT_FAILED:    "Payment for order {number} has failed. Please try again.",
    PAYMENT_REFUNDED:  "Payment for order {number} has been refunded.",
}


@dataclass(frozen=True)
class NotificationDraft:
    """An event to record once the order change is committed."""
    user_id: int
    type: str
    title: str
    message: str
    order_id: int
    data: dict = field(default_factory=dict)


# ── Private helpers ────────────────────────────────────────────────────────

def _format_amount(amount: Decimal | None) -> str | None:
    if amount is None:
        return None
    return str(Decimal(amount).quantize(Decimal("0.01")))


def _build_order_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "total_amount": _format_amount(order.total_amount),
        "created_at": to_iso(order.created_at),
        "updated_at": to_iso(order.updated_at),
    }


def _get_order_or_404(order_id: int, session: Session) -> Order:
    order = session.get(Order, order_id)
    if order is None:
        raise AppError(
            ErrorCode.ORDER_NOT_FOUND,
            f"Order {order_id} not found.",
            404,
        )
    return order


def _generate_order_number(session: Session) -> str:
    """RC<yyyymmdd><6 random digits>, re-drawn on the rare collision."""
    date_part = utcnow().strftime("%Y%m%d")
    for _ in range(_ORDER_NUMBER_ATTEMPTS):
        candidate = f"{ORDER_NUMBER_PREFIX}{date_part}{secrets.randbelow(10**6):06d}"
        taken = session.execute(
            select(Order.id).where(Order.order_number == candidate)
        ).scalar_one_or_none()
        if taken is None:
            return candidate
    raise RuntimeError("Could not allocate a unique order number.")


# ── Public service functions ───────────────────────────────────────────────

def create_order(
        user_id: int,
        total_amount: Decimal,
        payment_method: str,
        session: Session,
) -> dict:
    """Creates a pending order for user_id. Amount and method are pre-validated by the schema."""
    now = utcnow()
    order = Order(
        user_id=user_id,
        order_number=_generate_order_number(session),
        status=STATUS_PENDING,
        payment_status=PAYMENT_STATUSES[0],
        payment_method=payment_method,
        total_amount=total_amount,
        created_at=now,
        updated_at=now,
    )
    session.add(order)
    session.flush()
    logger.info("Order created: order_id=%s user_id=%s", order.id, user_id)
    return _build_order_dict(order)


def get_order(order_id: int, user_id: int, role: str, session: Session) -> dict:
    """
    Raises:
      AppError(ORDER_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403) — caller neither owns the order nor holds an admin role
    """
    order = _get_order_or_404(order_id, session)
    if order.user_id != user_id and role not in ADMIN_ROLES:
        raise forbidden("You do not have access to this order.")
    return _build_order_dict(order)


def list_orders(user_id: int, session: Session) -> list[dict]:
    """Orders of user_id, newest first."""
    orders = session.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    ).scalars().all()
    return [_build_order_dict(o) for o in orders]


def update_order_status(
        order_id: int,
        new_status: str,
        session: Session,
        notes: str | None = None,
) -> tuple[dict, NotificationDraft]:
    """
    Moves an order along the status machine.

    Raises:
      AppError(ORDER_NOT_FOUND, 404)
      AppError(INVALID_ORDER_STATUS, 400)      — not a known status
      AppError(INVALID_STATUS_TRANSITION, 400) — not reachable from the current status

    Returns: (order dict, NotificationDraft for the order owner)
    """
    if new_status not in ORDER_STATUSES:
        raise AppError(
            ErrorCode.INVALID_ORDER_STATUS,
            f"Unknown order status '{new_status}'.",
            400,
            field="status",
        )

    order = _get_order_or_404(order_id, session)
    old_status = order.status

    if new_status not in VALID_TRANSITIONS.get(old_status, ()):
        raise AppError(
            ErrorCode.INVALID_STATUS_TRANSITION,
            f"Cannot change order status from '{old_status}' to '{new_status}'.",
            400,
            field="status",
        )

    order.status = new_status
    order.updated_at = utcnow()
    session.flush()

    logger.info(
        "Order status changed: order_id=%s %s -> %s",
        order.id, old_status, new_status,
    )

    data = {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": new_status,
        "previous_status": old_status,
        "total_amount": _format_amount(order.total_amount),
    }
    if notes:
        data["notes"] = notes

    draft = NotificationDraft(
        user_id=order.user_id,
        type=TYPE_ORDER_STATUS,
        title=_ORDER_STATUS_TITLES.get(new_status, "Order Status Update"),
        message=_ORDER_STATUS_MESSAGES[new_status].format(number=order.order_number),
        order_id=order.id,
        data=data,
    )
    return _build_order_dict(order), draft


def update_payment_status(
        order_id: int,
        payment_status: str,
        session: Session,
) -> tuple[dict, NotificationDraft | None]:
    """
    Sets the payment status of an order.

    Only completed, failed and refunded produce a notification draft.

    Raises:
      AppError(ORDER_NOT_FOUND, 404)
      AppError(INVALID_PAYMENT_STATUS, 400)
    """
    if payment_status not in PAYMENT_STATUSES:
        raise AppError(
            ErrorCode.INVALID_PAYMENT_STATUS,
            f"Unknown payment status '{payment_status}'.",
            400,
            field="payment_status",
        )

    order = _get_order_or_404(order_id, session)
    previous = order.payment_status
    order.payment_status = payment_status
    order.updated_at = utcnow()
    session.flush()

    logger.info(
        "Payment status changed: order_id=%s %s -> %s",
        order.id, previous, payment_status,
    )

    if payment_status not in _PAYMENT_MESSAGES:
        return _build_order_dict(order), None

    draft = NotificationDraft(
        user_id=order.user_id,
        type=TYPE_PAYMENT_STATUS,
        title=_PAYMENT_TITLES[payment_status],
        message=_PAYMENT_MESSAGES[payment_status].format(number=order.order_number),
        order_id=order.id,
        data={
            "order_id": order.id,
            "order_number": order.order_number,
            "payment_status": payment_status,
            "payment_method": order.payment_method,
            "amount": _format_amount(order.total_amount),
        },
    )
    return _build_order_dict(order), draft
