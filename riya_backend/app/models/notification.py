"""
models/notification.py — Notification table definition.

Per-user event feed read by the polling endpoints. Rows are immutable after
insert except for is_read / updated_at.

created_at is assigned in Python with microsecond precision rather than by
the database clock: the polling watermark compares it with a strict '>' and
second-resolution server defaults would collapse distinct events.
Ties are broken by id (insertion order).

order_id is denormalised out of `data` so order-scoped polls can use an
index instead of a JSON lookup.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from riya_backend.app.extensions import db
from riya_backend.app.time_utils import utcnow


TYPE_ORDER_STATUS   = "order_status"
TYPE_PAYMENT_STATUS = "payment_status"
TYPE_NOTIFICATION   = "notification"
TYPE_SYSTEM_ALERT   = "system_alert"

NOTIFICATION_TYPES = (
    TYPE_ORDER_STATUS,
    TYPE_PAYMENT_STATUS,
    TYPE_NOTIFICATION,
    TYPE_SYSTEM_ALERT,
)


class Notification(db.Model):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
        Index("idx_notifications_user_read", "user_id", "is_read"),
        CheckConstraint(
            "type IN ('order_status', 'payment_status', 'notification', 'system_alert')",
            name="ck_notifications_type",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    order_id: Mapped[int | None] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    data: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    is_read: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
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
        back_populates="notifications",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Notification id={self.id} user_id={self.user_id} "
            f"type={self.type!r} is_read={self.is_read}>"
        )
