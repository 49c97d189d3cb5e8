"""
models/order.py — Order table definition.

Only the columns the status/payment notification path needs: items,
addresses and pricing breakdowns live outside this service.

FK policy: user_id ON DELETE RESTRICT. Users are soft-deactivated, never
deleted.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from riya_backend.app.extensions import db
from riya_backend.app.time_utils import utcnow


STATUS_PENDING    = "pending"
STATUS_CONFIRMED  = "confirmed"
STATUS_PROCESSING = "processing"
STATUS_SHIPPED    = "shipped"
STATUS_DELIVERED  = "delivered"
STATUS_CANCELLED  = "cancelled"
STATUS_REFUNDED   = "refunded"

ORDER_STATUSES = (
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_REFUNDED,
)

PAYMENT_PENDING   = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED    = "failed"
PAYMENT_REFUNDED  = "refunded"

PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_REFUNDED)

PAYMENT_METHODS = ("cod", "online", "razorpay")


class Order(db.Model):
    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_orders_total_nonnegative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    order_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=STATUS_PENDING,
    )

    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PAYMENT_PENDING,
    )

    payment_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="orders",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Order id={self.id} number={self.order_number!r} status={self.status!r}>"
