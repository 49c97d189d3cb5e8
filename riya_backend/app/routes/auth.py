"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard response envelope: {"success": true, "data": {...}}

No business logic here. No DB queries. No bare SQL.
AppError propagates to the global error handler in app/__init__.py; routes
never catch it. The only write that survives a failed request is the
failed-login counter, which credential_service commits itself.

Endpoints (url_prefix=/api/v1/auth):
  POST   /register                → 201
  POST   /login                   → 200
  POST   /refresh                 → 200
  POST   /logout                  → 200  (auth)
  GET    /me                      → 200  (auth)
  POST   /change-password         → 200  (auth)
  POST   /password-reset          → 200  (always, no account enumeration)
  POST   /password-reset/confirm  → 200
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from riya_backend.app.extensions import db, get_settings
from riya_backend.app.middleware.auth_middleware import require_auth
from riya_backend.app.schemas.auth_schema import (
    ChangePasswordSchema,
    LoginSchema,
    LogoutSchema,
    PasswordResetConfirmSchema,
    PasswordResetRequestSchema,
    RefreshTokenSchema,
    RegisterSchema,
)
from riya_backend.app.services import auth_service

auth_bp = Blueprint("auth", __name__)

_RESET_REQUESTED_MESSAGE = (
    "If an account exists for this email address, password reset "
    "instructions have been sent."
)


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create a customer account; return tokens."""
    data = RegisterSchema().load(request.get_json(force=True) or {})
    result = auth_service.register_user(
        email=data["email"],
        password=data["password"],
        first_name=data["first_name"],
        last_name=data["last_name"],
        phone=data.get("phone"),
        session=db.session,
        settings=get_settings(),
    )
    db.session.commit()
    return jsonify({"success": True, "data": result}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate; return tokens."""
    data = LoginSchema().load(request.get_json(force=True) or {})
    result = auth_service.login_user(
        email=data["email"],
        password=data["password"],
        session=db.session,
        settings=get_settings(),
    )
    db.session.commit()
    return jsonify({"success": True, "data": result}), 200


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Rotate a refresh token into a new pair."""
    data = RefreshTokenSchema().load(request.get_json(force=True) or {})
    result = auth_service.refresh_tokens(
        raw_refresh_token=data["refresh_token"],
        session=db.session,
        settings=get_settings(),
    )
    db.session.commit()
    return jsonify({"success": True, "data": result}), 200


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """POST /auth/logout — Revoke one refresh token, or all of the caller's."""
    data = LogoutSchema().load(request.get_json(silent=True) or {})
    revoked = auth_service.logout_user(
        user_id=g.user_id,
        raw_refresh_token=data.get("refresh_token"),
        session=db.session,
        settings=get_settings(),
    )
    db.session.commit()
    return jsonify({
        "success": True,
        "data": {"message": "Logged out successfully.", "revoked": revoked},
    }), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Return current user profile."""
    result = auth_service.get_current_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"success": True, "data": result}), 200


@auth_bp.route("/change-password", methods=["POST"])
@require_auth
def change_password():
    """POST /auth/change-password — Replace password; revoke all refresh tokens."""
    data = ChangePasswordSchema().load(request.get_json(force=True) or {})
    auth_service.change_password(
        user_id=g.user_id,
        current_password=data["current_password"],
        new_password=data["new_password"],
        session=db.session,
        settings=get_settings(),
    )
    db.session.commit()
    return jsonify({
        "success": True,
        "data": {"message": "Password changed successfully. Please log in again."},
    }), 200


@auth_bp.route("/password-reset", methods=["POST"])
def request_password_reset():
    """
    POST /auth/password-reset — Start a reset.

    The response is identical whether or not the account exists. Delivery of
    the token to the user happens outside this service.
    """
    data = PasswordResetRequestSchema().load(request.get_json(force=True) or {})
    auth_service.initiate_password_reset(
        email=data["email"],
        session=db.session,
        settings=get_settings(),
    )
    db.session.commit()
    return jsonify({"success": True, "data": {"message": _RESET_REQUESTED_MESSAGE}}), 200


@auth_bp.route("/password-reset/confirm", methods=["POST"])
def confirm_password_reset():
    """POST /auth/password-reset/confirm — Consume a reset token."""
    data = PasswordResetConfirmSchema().load(request.get_json(force=True) or {})
    auth_service.complete_password_reset(
        raw_token=data["token"],
        new_password=data["password"],
        session=db.session,
        settings=get_settings(),
    )
    db.session.commit()
    return jsonify({
        "success": True,
        "data": {"message": "Password has been reset. Please log in with your new password."},
    }), 200
