"""
services/auth_service.py — Authentication business logic.

Responsibilities:
  - User registration and credential validation (login with lockout)
  - Token pair issuance, refresh rotation and logout (via token_service)
  - Password change and password reset
  - Periodic cleanup of expired refresh/reset tokens

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes beyond AppError
  - Settings and the SQLAlchemy session are passed in by the route

Failure policy:
  - Unknown email, wrong password and deactivated account all produce the
    same INVALID_CREDENTIALS error, after the same amount of bcrypt work.
  - A locked account produces ACCOUNT_LOCKED before the password is checked.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from riya_backend.app.errors import AppError, ErrorCode, invalid_credentials
from riya_backend.app.models.password_reset import PasswordReset
from riya_backend.app.models.user import ROLE_CUSTOMER, ROLES, User
from riya_backend.app.services import credential_service, token_service
from riya_backend.app.time_utils import as_utc, to_iso, utcnow
from riya_backend.config import Settings

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _get_user_by_email(email: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.email == email.strip().lower())
    ).scalar_one_or_none()


def _get_active_user_or_404(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None or not user.is_active:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return user


def build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. Never includes credential fields."""
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "role": user.role,
        "created_at": to_iso(user.created_at),
        "last_login_at": to_iso(user.last_login_at),
    }


# ── Public service functions ───────────────────────────────────────────────

def create_user(
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        session: Session,
        settings: Settings,
        phone: str | None = None,
        role: str = ROLE_CUSTOMER,
) -> User:
    """
    Creates and flushes a user row. Used by registration and the operator CLI.

    Raises:
      AppError(WEAK_PASSWORD, 400)      — password fails strength rules
      AppError(INVALID_FIELD, 400)      — unknown role
      AppError(DUPLICATE_EMAIL, 409)    — email already registered
    """
    email = email.strip().lower()
    if role not in ROLES:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            f"Unknown role '{role}'.",
            400,
            field="role",
        )
    credential_service.validate_password_strength(password)

    if _get_user_by_email(email, session) is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            "An account with this email address already exists.",
            409,
            field="email",
        )

    user = User(
        email=email,
        password_hash=credential_service.hash_password(password, settings.lockout.bcrypt_rounds),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role=role,
    )
    session.add(user)
    session.flush()  # populate user.id
    logger.info("User created: user_id=%s role=%s", user.id, user.role)
    return user


def register_user(
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        session: Session,
        settings: Settings,
        phone: str | None = None,
) -> dict:
    """
    Creates a customer account and issues an access + refresh token pair.

    Public registration always creates customers; other roles are only
    assigned through the operator CLI.

    Raises: see create_user()

    Returns: {"user": {...}, "tokens": {...}}
    """
    user = create_user(
        email, password, first_name, last_name, session, settings,
        phone=phone, role=ROLE_CUSTOMER,
    )
    tokens = token_service.issue_token_pair(user.id, user.role, session, settings.token)

    return {
        "user": build_user_dict(user),
        "tokens": tokens.to_dict(),
    }


def login_user(
        email: str,
        password: str,
        session: Session,
        settings: Settings,
        now: datetime | None = None,
) -> dict:
    """
    Validates credentials and issues a new access + refresh token pair.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — unknown email, wrong password,
                                           or deactivated account
      AppError(ACCOUNT_LOCKED, 423)      — lockout window active

    Returns: {"user": {...}, "tokens": {...}}
    """
    now = now or utcnow()
    rounds = settings.lockout.bcrypt_rounds
    user = _get_user_by_email(email, session)

    if user is None or not user.is_active:
        credential_service.verify_password(password, None, rounds)
        logger.info("Failed login for unknown or inactive account")
        raise invalid_credentials()

    credential_service.ensure_not_locked(user, now)

    if not credential_service.verify_password(password, user.password_hash, rounds):
        attempts = credential_service.record_failed_attempt(user, session, settings.lockout, now)
        logger.info("Failed login: user_id=%s attempts=%d", user.id, attempts)
        raise invalid_credentials()

    if credential_service.needs_rehash(user.password_hash, rounds):
        user.password_hash = credential_service.hash_password(password, rounds)

    credential_service.record_success(user, session, now)
    tokens = token_service.issue_token_pair(user.id, user.role, session, settings.token, now=now)
    logger.info("User logged in: user_id=%s", user.id)

    return {
        "user": build_user_dict(user),
        "tokens": tokens.to_dict(),
    }


def refresh_tokens(
        raw_refresh_token: str,
        session: Session,
        settings: Settings,
) -> dict:
    """
    Rotates a refresh token: the presented token is revoked and a new
    access + refresh pair is returned.

    Raises:
      AppError(TOKEN_INVALID | TOKEN_EXPIRED | TOKEN_REVOKED, 401)

    Returns: {"user": {...}, "tokens": {...}}
    """
    user, tokens = token_service.rotate_refresh_token(raw_refresh_token, session, settings.token)
    logger.info("Refresh token rotated: user_id=%s", user.id)
    return {
        "user": build_user_dict(user),
        "tokens": tokens.to_dict(),
    }


def logout_user(
        user_id: int,
        raw_refresh_token: str | None,
        session: Session,
        settings: Settings,
) -> int:
    """
    Revokes the given refresh token, or every live refresh token of the user
    when none is supplied. Access tokens are stateless and expire on their own.

    Returns the number of refresh tokens revoked.
    """
    if raw_refresh_token:
        token_service.revoke_refresh_token(raw_refresh_token, user_id, session, settings.token)
        revoked = 1
    else:
        revoked = token_service.revoke_all_for_user(user_id, session)
    logger.info("User logged out: user_id=%s revoked=%d", user_id, revoked)
    return revoked


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      AppError(USER_NOT_FOUND, 404) — user_id from the token no longer exists
        or has been deactivated since the token was issued.
    """
    return build_user_dict(_get_active_user_or_404(user_id, session))


def change_password(
        user_id: int,
        current_password: str,
        new_password: str,
        session: Session,
        settings: Settings,
) -> None:
    """
    Replaces the password after re-checking the current one, then revokes
    every refresh token so other sessions must log in again.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(CURRENT_PASSWORD_INCORRECT, 400)
      AppError(WEAK_PASSWORD, 400)
    """
    rounds = settings.lockout.bcrypt_rounds
    user = _get_active_user_or_404(user_id, session)

    if not credential_service.verify_password(current_password, user.password_hash, rounds):
        raise AppError(
            ErrorCode.CURRENT_PASSWORD_INCORRECT,
            "The current password is incorrect.",
            400,
            field="current_password",
        )
    credential_service.validate_password_strength(new_password)

    user.password_hash = credential_service.hash_password(new_password, rounds)
    token_service.revoke_all_for_user(user.id, session)
    session.flush()
    logger.info("Password changed: user_id=%s", user.id)


def initiate_password_reset(
        email: str,
        session: Session,
        settings: Settings,
        now: datetime | None = None,
) -> str | None:
    """
    Creates a single-use reset token for the account with this email.

    The raw token is returned to the caller (delivery happens elsewhere);
    only its digest is stored. Returns None when no active account matches,
    which the route must not reveal.
    """
    now = now or utcnow()
    user = _get_user_by_email(email, session)
    if user is None or not user.is_active:
        logger.info("Password reset requested for unknown or inactive account")
        return None

    raw_token = secrets.token_urlsafe(32)
    session.add(PasswordReset(
        user_id=user.id,
        token_hash=_hash_token(raw_token),
        expires_at=now + settings.token.password_reset_ttl,
        created_at=now,
    ))
    session.flush()
    logger.info("Password reset initiated: user_id=%s", user.id)
    return raw_token


def complete_password_reset(
        raw_token: str,
        new_password: str,
        session: Session,
        settings: Settings,
        now: datetime | None = None,
) -> None:
    """
    Consumes a reset token: sets the new password, marks the token used,
    revokes all refresh tokens and clears any lockout.

    Raises:
      AppError(RESET_TOKEN_INVALID, 400) — unknown, expired, or already used
      AppError(WEAK_PASSWORD, 400)
    """
    now = now or utcnow()
    reset = session.execute(
        select(PasswordReset).where(PasswordReset.token_hash == _hash_token(raw_token))
    ).scalar_one_or_none()

    if reset is None or reset.used_at is not None or as_utc(reset.expires_at) <= now:
        raise AppError(
            ErrorCode.RESET_TOKEN_INVALID,
            "The password reset link is invalid or has expired.",
            400,
            field="token",
        )

    user = session.get(User, reset.user_id)
    if user is None or not user.is_active:
        raise AppError(
            ErrorCode.RESET_TOKEN_INVALID,
            "The password reset link is invalid or has expired.",
            400,
            field="token",
        )

    credential_service.validate_password_strength(new_password)

    user.password_hash = credential_service.hash_password(new_password, settings.lockout.bcrypt_rounds)
    user.failed_login_attempts = 0
    user.locked_until = None
    reset.used_at = now
    token_service.revoke_all_for_user(user.id, session, now)
    session.flush()
    logger.info("Password reset completed: user_id=%s", user.id)


def cleanup_expired_tokens(session: Session, now: datetime | None = None) -> dict:
    """Deletes expired refresh tokens and reset tokens. Returns counts."""
    now = now or utcnow()
    deleted_tokens = token_service.purge_expired(session, now)
    result = session.execute(
        delete(PasswordReset)
        .where(PasswordReset.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    session.flush()
    logger.info(
        "Token cleanup completed: refresh_tokens=%d password_resets=%d",
        deleted_tokens,
        result.rowcount,
    )
    return {
        "refresh_tokens": deleted_tokens,
        "password_resets": result.rowcount,
    }
