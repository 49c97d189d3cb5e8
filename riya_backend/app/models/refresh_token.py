"""
models/refresh_token.py — RefreshToken table definition.

One row per issued refresh token. No business logic.

The raw token is never stored: `jti` identifies the row and `token_hash`
holds the SHA-256 digest of the signed token so a leaked table cannot be
replayed. A row is live while revoked_at IS NULL and expires_at is in the
future. Rotation sets revoked_at on the old row and inserts a new one.

FK policy: user_id ON DELETE CASCADE.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from riya_backend.app.extensions import db
from riya_backend.app.time_utils import utcnow


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    __table_args__ = (
        Index("idx_refresh_tokens_user_expires", "user_id", "expires_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    jti: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<RefreshToken id={self.id} "
            f"user_id={self.user_id} "
            f"revoked_at={self.revoked_at}>"
        )
