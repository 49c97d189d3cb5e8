"""
middleware/auth_middleware.py — Bearer token authentication and role guards.

@require_auth:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Verifies the access token through token_service.verify_access_token
     (signature, expiry, issuer, audience, token type)
  3. Attaches user_id (int) and role (str) to flask.g for the request
  4. Raises the appropriate 401 AppError if any step fails; the view never runs

@require_role(*roles):
  Implies @require_auth. Raises 403 FORBIDDEN unless g.role is exactly one
  of the listed roles. Roles form a flat set: listing "admin" does not admit
  "superadmin" unless it is listed too.

Ownership checks (order belongs to caller, etc.) stay in the service layer.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, invalid signature, wrong token type
  TOKEN_EXPIRED  (401) — valid token but exp has passed
  FORBIDDEN      (403) — require_role only
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g, request

from riya_backend.app.errors import AppError, ErrorCode, forbidden
from riya_backend.app.extensions import get_settings
from riya_backend.app.services import token_service


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces access-token authentication.

    Usage:
        @polling_bp.get("/updates")
        @require_auth
        def get_updates():
            user_id = g.user_id  # always an int when this runs
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: str) -> Callable:
    """
    Route decorator factory: authentication plus an exact role match.

    Usage:
        @require_role(*ADMIN_ROLES)
        def create_notification(): ...
    """
    allowed = frozenset(roles)

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            _authenticate_request()
            if g.role not in allowed:
                raise forbidden("You do not have permission to perform this action.")
            return f(*args, **kwargs)

        return decorated

    return decorator


def _authenticate_request() -> None:
    """
    Parses the bearer token, verifies it and sets g.user_id / g.role.

    Raises AppError on any failure (the global error handler renders it).
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    claims = token_service.verify_access_token(parts[1], get_settings().token)

    g.user_id = claims.user_id
    g.role = claims.role
