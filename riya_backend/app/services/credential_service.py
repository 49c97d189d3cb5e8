"""
services/credential_service.py — Password hashing and login lockout policy.

Password storage:
  - bcrypt with a unique salt per hash; cost factor from
    LockoutConfig.bcrypt_rounds (BCRYPT_LOG_ROUNDS, default 12).
  - Raw passwords are never stored and never logged.

Lockout:
  - Each failed login increments users.failed_login_attempts with one
    atomic UPDATE. When the counter reaches LockoutConfig.threshold the same
    statement sets locked_until = now + window.
  - While locked_until > now every login fails with ACCOUNT_LOCKED, whether
    or not the password is correct.
  - A successful login resets the counter and clears the lock. A failure
    after an elapsed lock starts counting again from 1.
"""

from __future__ import annotations

import functools
import logging
import string
from datetime import datetime

import bcrypt
from sqlalchemy import case, update
from sqlalchemy.orm import Session

from riya_backend.app.errors import AppError, ErrorCode
from riya_backend.app.models.user import User
from riya_backend.app.time_utils import as_utc, utcnow
from riya_backend.config import LockoutConfig

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


@functools.lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> bytes:
    """Hash compared against when no user matched, so both paths cost one bcrypt check."""
    return bcrypt.hashpw(b"no-such-user-placeholder", bcrypt.gensalt(rounds=rounds))


def hash_password(password: str, rounds: int) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def verify_password(password: str, password_hash: str | None, rounds: int = 12) -> bool:
    """
    Constant-time bcrypt verification.

    With password_hash=None a dummy hash of the given cost is checked and
    False is returned, keeping unknown-account logins as slow as real ones.
    """
    if password_hash is None:
        bcrypt.checkpw(password.encode("utf-8"), _dummy_hash(rounds))
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        logger.error("Stored password hash is not a valid bcrypt hash")
        return False


def needs_rehash(password_hash: str, rounds: int) -> bool:
    """True when the stored hash was produced with a different cost factor."""
    try:
        return int(password_hash.split("$")[2]) != rounds
    except (IndexError, ValueError):
        return True


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with at least one uppercase letter, one lowercase
    letter, one digit and one special character.

    Raises AppError(WEAK_PASSWORD, 400).
    """
    rules = (
        (len(password) >= MIN_PASSWORD_LENGTH,
         f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."),
        (any(c.isupper() for c in password),
         "Password must contain at least one uppercase letter."),
        (any(c.islower() for c in password),
         "Password must contain at least one lowercase letter."),
        (any(c.isdigit() for c in password),
         "Password must contain at least one number."),
        (any(c in string.punctuation or c.isspace() for c in password),
         "Password must contain at least one special character."),
    )
    for ok, message in rules:
        if not ok:
            raise AppError(ErrorCode.WEAK_PASSWORD, message, 400, field="password")


def is_locked(user: User, now: datetime | None = None) -> bool:
    return user.locked_until is not None and as_utc(user.locked_until) > (now or utcnow())


def ensure_not_locked(user: User, now: datetime | None = None) -> None:
    """
    Raises AppError(ACCOUNT_LOCKED, 423) while the lockout window is active.
    The message does not disclose remaining time or attempt counts.
    """
    if is_locked(user, now):
        raise AppError(
            ErrorCode.ACCOUNT_LOCKED,
            "This account is temporarily locked because of repeated failed "
            "login attempts. Please try again later.",
            423,
        )


def record_failed_attempt(
        user: User,
        session: Session,
        config: LockoutConfig,
        now: datetime | None = None,
) -> int:
    """
    Counts one failed login and locks the account once the threshold is hit.

    Commits immediately: the caller raises INVALID_CREDENTIALS right after,
    and an uncommitted increment would be rolled back with the request.

    Returns the updated failure count.
    """
    now = now or utcnow()
    lock_until = now + config.window

    lock_elapsed = user.locked_until is not None and as_utc(user.locked_until) <= now
    if lock_elapsed:
        values = {
            "failed_login_attempts": 1,
            "locked_until": lock_until if config.threshold <= 1 else None,
        }
    else:
        new_count = User.failed_login_attempts + 1
        values = {
            "failed_login_attempts": new_count,
            "locked_until": case(
                (new_count >= config.threshold, lock_until),
                else_=User.locked_until,
            ),
        }

    session.execute(
        update(User)
        .where(User.id == user.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.refresh(user, ["failed_login_attempts", "locked_until"])

    if is_locked(user, now):
        logger.warning(
            "Account locked after %d failed login attempts: user_id=%s",
            user.failed_login_attempts,
            user.id,
        )
    return user.failed_login_attempts


def record_success(
        user: User,
        session: Session,
        now: datetime | None = None,
) -> None:
    """Resets the failure counter, clears any lock and stamps last_login_at."""
    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now or utcnow()
    session.flush()
