"""
models/user.py — User table definition.

Holds identity, credential and lockout state. No business logic.
Users are never physically deleted; is_active = False deactivates them.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from riya_backend.app.extensions import db
from riya_backend.app.time_utils import utcnow


ROLE_CUSTOMER   = "customer"
ROLE_ADMIN      = "admin"
ROLE_MANAGER    = "manager"
ROLE_SUPERADMIN = "superadmin"

ROLES = (ROLE_CUSTOMER, ROLE_ADMIN, ROLE_MANAGER, ROLE_SUPERADMIN)

# Flat set, not a hierarchy: each role is listed explicitly where it is allowed.
ADMIN_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_SUPERADMIN)


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
        CheckConstraint(
            "role IN ('customer', 'admin', 'manager', 'superadmin')",
            name="ck_users_role",
        ),
        CheckConstraint(
            "failed_login_attempts >= 0",
            name="ck_users_failed_attempts_nonnegative",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    # bcrypt output; the algorithm and cost are encoded in the hash prefix.
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ROLE_CUSTOMER,
        server_default=ROLE_CUSTOMER,
        index=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )

    # ── Lockout state ──────────────────────────────────────────────────────
    failed_login_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    locked_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(  # noqa: F821
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    notifications: Mapped[list["Notification"]] = relationship(  # noqa: F821
        "Notification",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    orders: Mapped[list["Order"]] = relationship(  # noqa: F821
        "Order",
        back_populates="user",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"
