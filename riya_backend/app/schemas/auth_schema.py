"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field presence, types, lengths, email format.
  - services/credential_service.py: password strength (WEAK_PASSWORD), so
    the same rules apply to registration, password change and reset.
  - services/auth_service.py: DUPLICATE_EMAIL (needs a DB lookup).

IMPORTANT: All schemas inherit from marshmallow.Schema directly so they can
           be loaded in unit tests without an application context.
"""

from __future__ import annotations

from marshmallow import Schema, fields, post_load, validate


def _normalise_email(data: dict) -> dict:
    if "email" in data:
        data["email"] = data["email"].strip().lower()
    return data


class RegisterSchema(Schema):
    """
    POST /auth/register

    The role is never accepted from the request body; public registration
    always creates customers.
    """

    email = fields.Email(required=True, validate=validate.Length(max=255))
    password = fields.Str(required=True, load_only=True, validate=validate.Length(max=128))
    first_name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    last_name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    phone = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Regexp(
            r"^\+?[0-9][0-9 \-]{6,18}[0-9]$",
            error="Phone number format is invalid.",
        ),
    )

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        return _normalise_email(data)


class LoginSchema(Schema):
    """
    POST /auth/login

    Credential correctness and lockout are checked in auth_service.py.
    """

    email = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    password = fields.Str(required=True, load_only=True)

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        return _normalise_email(data)


class RefreshTokenSchema(Schema):
    """POST /auth/refresh"""

    refresh_token = fields.Str(required=True, validate=validate.Length(min=1))


class LogoutSchema(Schema):
    """
    POST /auth/logout

    Without refresh_token every live refresh token of the caller is revoked.
    """

    refresh_token = fields.Str(load_default=None, allow_none=True)


class ChangePasswordSchema(Schema):
    """POST /auth/change-password"""

    current_password = fields.Str(required=True, load_only=True)
    new_password = fields.Str(required=True, load_only=True, validate=validate.Length(max=128))


class PasswordResetRequestSchema(Schema):
    """POST /auth/password-reset"""

    email = fields.Email(required=True)

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        return _normalise_email(data)


class PasswordResetConfirmSchema(Schema):
    """POST /auth/password-reset/confirm"""

    token = fields.Str(required=True, validate=validate.Length(min=1))
    password = fields.Str(required=True, load_only=True, validate=validate.Length(max=128))
