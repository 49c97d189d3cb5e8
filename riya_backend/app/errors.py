"""
errors.py — AppError base class and error code registry.

Every error returned by the API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - Authentication messages are generic: they never reveal whether an
    account exists or whether a password was otherwise correct.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"success": False, "error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_TIMESTAMP          = "INVALID_TIMESTAMP"
    INVALID_UPDATE_TYPE        = "INVALID_UPDATE_TYPE"
    INVALID_ORDER_STATUS       = "INVALID_ORDER_STATUS"
    INVALID_PAYMENT_STATUS     = "INVALID_PAYMENT_STATUS"
    INVALID_STATUS_TRANSITION  = "INVALID_STATUS_TRANSITION"
    WEAK_PASSWORD              = "WEAK_PASSWORD"
    CURRENT_PASSWORD_INCORRECT = "CURRENT_PASSWORD_INCORRECT"
    RESET_TOKEN_INVALID        = "RESET_TOKEN_INVALID"
    MALFORMED_REQUEST          = "MALFORMED_REQUEST"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    ORDER_NOT_FOUND            = "ORDER_NOT_FOUND"
    RESOURCE_NOT_FOUND         = "RESOURCE_NOT_FOUND"     # unknown URL

    # ── Method Errors (405) ────────────────────────────────────────────────
    METHOD_NOT_ALLOWED         = "METHOD_NOT_ALLOWED"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    # TOKEN_EXPIRED / TOKEN_REVOKED tell the client to refresh or log out;
    # TOKEN_INVALID is always fatal to the session.
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    ACCOUNT_LOCKED             = "ACCOUNT_LOCKED"         # 423
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    TOKEN_REVOKED              = "TOKEN_REVOKED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500 / 503) ──────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE        = "SERVICE_UNAVAILABLE"


# ── Shorthand constructors ─────────────────────────────────────────────────
# Used where the same failure is raised from several services.

def forbidden(message: str = "You do not have permission to perform this action.") -> AppError:
    return AppError(ErrorCode.FORBIDDEN, message, 403)


def invalid_credentials() -> AppError:
    return AppError(
        ErrorCode.INVALID_CREDENTIALS,
        "The email or password is incorrect.",
        401,
    )
