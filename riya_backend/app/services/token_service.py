"""
services/token_service.py — Access/refresh token issuance, verification and rotation.

Token design:
  - Access token: JWT signed with TokenConfig.access_secret. Stateless; it is
    never revoked individually and simply expires (default TTL 24h).
  - Refresh token: JWT signed with the distinct TokenConfig.refresh_secret
    (default TTL 7d). Every refresh token has a row in refresh_tokens keyed
    by its jti, holding the SHA-256 digest of the token (never the raw value)
    and a nullable revoked_at.
  - Both carry: sub (user id as str), role, iss, aud, iat, exp, jti, type.

Expiry: a token is expired once now >= exp + leeway. The leeway is the
constant TokenConfig.leeway_seconds (0 by default, at most 60).

Rotation: rotate_refresh_token() revokes the presented refresh token with a
single conditional UPDATE (... WHERE revoked_at IS NULL) and issues a new
pair in the same transaction. A second rotation of the same token updates
zero rows and fails with TOKEN_REVOKED.

Layer rules:
  - No Flask imports. Receives the SQLAlchemy session and TokenConfig as
    arguments. Commits are the route's responsibility; only flush here.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from riya_backend.app.errors import AppError, ErrorCode
from riya_backend.app.models.refresh_token import RefreshToken
from riya_backend.app.models.user import User
from riya_backend.app.time_utils import utcnow
from riya_backend.config import TokenConfig

logger = logging.getLogger(__name__)

TOKEN_TYPE_ACCESS  = "access"
TOKEN_TYPE_REFRESH = "refresh"

_REQUIRED_CLAIMS = ["sub", "iat", "exp", "iss", "aud", "jti"]


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    role: str
    jti: str
    issued_at: int
    expires_at: int


# ── Private helpers ────────────────────────────────────────────────────────

def _hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token string. Used for refresh token storage."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _new_jti() -> str:
    return secrets.token_hex(16)


def _encode(payload: dict, secret: str, config: TokenConfig) -> str:
    try:
        return jwt.encode(payload, secret, algorithm=config.algorithm)
    except (TypeError, ValueError, NotImplementedError, jwt.InvalidKeyError) as exc:
        # Signing-key misconfiguration is an operator problem, not a client one.
        raise RuntimeError(f"Unable to sign token: {exc}") from exc


def _claims(user_id: int, role: str, token_type: str, issued_at: int, ttl: timedelta,
            config: TokenConfig) -> dict:
    return {
        "sub": str(user_id),
        "role": role,
        "iss": config.issuer,
        "aud": config.audience,
        "iat": issued_at,
        "exp": issued_at + int(ttl.total_seconds()),
        "jti": _new_jti(),
        "type": token_type,
    }


def _decode(raw_token: str, secret: str, token_type: str, config: TokenConfig) -> dict:
    """
    Verifies signature, expiry, issuer, audience and token type.

    Raises:
      AppError(TOKEN_EXPIRED, 401) — exp has passed (after leeway)
      AppError(TOKEN_INVALID, 401) — anything else
    """
    try:
        payload = jwt.decode(
            raw_token,
            secret,
            algorithms=[config.algorithm],
            audience=config.audience,
            issuer=config.issuer,
            leeway=config.leeway_seconds,
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The token has expired.",
            401,
        )
    except jwt.InvalidTokenError:
        # Covers: bad signature, malformed token, wrong issuer/audience, etc.
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The token is invalid or has been tampered with.",
            401,
        )

    if payload.get("type") != token_type:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            f"Expected a {token_type} token.",
            401,
        )

    try:
        payload["sub"] = int(payload["sub"])
    except (TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim is not a valid user ID.",
            401,
        )
    return payload


# ── Public service functions ───────────────────────────────────────────────

def issue_token_pair(
        user_id: int,
        role: str,
        session: Session,
        config: TokenConfig,
        now: datetime | None = None,
) -> TokenPair:
    """
    Mints an access token and a refresh token, and records the refresh
    token's jti and digest in refresh_tokens.

    Raises RuntimeError only when the signing configuration is unusable.
    """
    now = now or utcnow()
    issued_at = int(now.timestamp())

    access_claims = _claims(user_id, role, TOKEN_TYPE_ACCESS, issued_at, config.access_ttl, config)
    refresh_claims = _claims(user_id, role, TOKEN_TYPE_REFRESH, issued_at, config.refresh_ttl, config)

    access_token = _encode(access_claims, config.access_secret, config)
    refresh_token = _encode(refresh_claims, config.refresh_secret, config)

    session.add(RefreshToken(
        user_id=user_id,
        jti=refresh_claims["jti"],
        token_hash=_hash_token(refresh_token),
        issued_at=now,
        expires_at=now + config.refresh_ttl,
    ))
    # flush so the row exists before we return; commit is the route's job
    session.flush()

    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=int(config.access_ttl.total_seconds()),
    )


def verify_access_token(raw_token: str, config: TokenConfig) -> AccessClaims:
    """
    Verifies an access token and returns its identity claims.

    Raises:
      AppError(TOKEN_INVALID, 401) — bad signature, malformed, wrong type
      AppError(TOKEN_EXPIRED, 401) — expired
    """
    payload = _decode(raw_token, config.access_secret, TOKEN_TYPE_ACCESS, config)
    return AccessClaims(
        user_id=payload["sub"],
        role=payload.get("role", ""),
        jti=payload["jti"],
        issued_at=payload["iat"],
        expires_at=payload["exp"],
    )


def verify_refresh_token(
        raw_token: str,
        session: Session,
        config: TokenConfig,
) -> RefreshToken:
    """
    Verifies a refresh token against the refresh secret and its stored row.

    Raises:
      AppError(TOKEN_INVALID, 401) — bad signature, unknown jti, digest mismatch
      AppError(TOKEN_EXPIRED, 401) — expired
      AppError(TOKEN_REVOKED, 401) — rotated or logged out
    """
    payload = _decode(raw_token, config.refresh_secret, TOKEN_TYPE_REFRESH, config)

    record = session.execute(
        select(RefreshToken).where(RefreshToken.jti == payload["jti"])
    ).scalar_one_or_none()

    if (
        record is None
        or record.user_id != payload["sub"]
        or not secrets.compare_digest(record.token_hash, _hash_token(raw_token))
    ):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The refresh token is not recognised.",
            401,
        )

    if record.revoked_at is not None:
        logger.warning(
            "Revoked refresh token presented: user_id=%s jti=%s",
            record.user_id,
            record.jti,
        )
        raise AppError(
            ErrorCode.TOKEN_REVOKED,
            "The refresh token has been revoked. Please log in again.",
            401,
        )

    return record


def rotate_refresh_token(
        raw_token: str,
        session: Session,
        config: TokenConfig,
        now: datetime | None = None,
) -> tuple[User, TokenPair]:
    """
    Exchanges a live refresh token for a brand-new pair and revokes the old one.

    The new access token carries the user's current role, not the role
    embedded in the old token.

    Raises: everything verify_refresh_token() raises, plus
      AppError(TOKEN_REVOKED, 401) — a concurrent rotation won the race,
                                     or the account has been deactivated.
    """
    now = now or utcnow()
    record = verify_refresh_token(raw_token, session, config)

    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.id == record.id,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=now)
    )
    if result.rowcount == 0:
        raise AppError(
            ErrorCode.TOKEN_REVOKED,
            "The refresh token has been revoked. Please log in again.",
            401,
        )

    user = session.get(User, record.user_id)
    if user is None or not user.is_active:
        raise AppError(
            ErrorCode.TOKEN_REVOKED,
            "The refresh token has been revoked. Please log in again.",
            401,
        )

    pair = issue_token_pair(user.id, user.role, session, config, now=now)
    return user, pair


def revoke_refresh_token(
        raw_token: str,
        user_id: int,
        session: Session,
        config: TokenConfig,
        now: datetime | None = None,
) -> None:
    """
    Revokes one refresh token owned by user_id (logout).

    Expired tokens may still be revoked.

    Raises:
      AppError(TOKEN_INVALID, 401) — not a refresh token issued to this user
      AppError(TOKEN_REVOKED, 401) — already revoked
    """
    now = now or utcnow()
    try:
        payload = jwt.decode(
            raw_token,
            config.refresh_secret,
            algorithms=[config.algorithm],
            audience=config.audience,
            issuer=config.issuer,
            options={"verify_exp": False},
        )
    except jwt.InvalidTokenError:
        payload = None

    record = None
    if payload is not None and payload.get("type") == TOKEN_TYPE_REFRESH:
        record = session.execute(
            select(RefreshToken).where(RefreshToken.jti == payload.get("jti"))
        ).scalar_one_or_none()

    if record is None or record.user_id != user_id:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The refresh token is not recognised.",
            401,
        )

    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.id == record.id,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=now)
    )
    if result.rowcount == 0:
        raise AppError(
            ErrorCode.TOKEN_REVOKED,
            "The refresh token has already been revoked.",
            401,
        )
    session.flush()


def revoke_all_for_user(
        user_id: int,
        session: Session,
        now: datetime | None = None,
) -> int:
    """Revokes every live refresh token of a user. Returns the number revoked."""
    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=now or utcnow())
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    return result.rowcount


def purge_expired(session: Session, now: datetime | None = None) -> int:
    """Deletes refresh token rows past their expiry. Returns the number deleted."""
    result = session.execute(
        delete(RefreshToken)
        .where(RefreshToken.expires_at < (now or utcnow()))
        .execution_options(synchronize_session=False)
    )
    session.flush()
    return result.rowcount
