"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which allows multiple
         isolated test app instances.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Build the typed Settings bundle (TokenConfig, LockoutConfig,
     PollingConfig) once, validating it eagerly, and store it in
     app.extensions for routes and middleware
  3. Configure the package log level
  4. Initialise SQLAlchemy via init_app()
  5. Register all route blueprints under /api/v1
  6. Register global error handlers (AppError → JSON, Exception → 500)
  7. Register the operator CLI commands
  8. Register a custom JSON provider to serialise Decimal as string

Note on model imports:
  All model modules are imported inside create_app() so that SQLAlchemy's
  metadata is complete before db.create_all() or any query runs.
"""

from __future__ import annotations

import logging
import os
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from riya_backend.config import Settings, config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str | None = None) -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to FLASK_ENV, then "development".

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    config_name = config_name or os.getenv("FLASK_ENV", "development")

    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # Typed settings are built once; a bad value fails startup, not a request.
    from riya_backend.app.extensions import SETTINGS_KEY, db
    app.extensions[SETTINGS_KEY] = Settings.from_mapping(app.config)

    # ── Logging ────────────────────────────────────────────────────────────
    logging.getLogger("riya_backend").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # ── Extensions ─────────────────────────────────────────────────────────
    db.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # The imports are intentionally unused by name; side effect is the point.
    with app.app_context():
        from riya_backend.app.models import (  # noqa: F401
            notification,
            order,
            password_reset,
            refresh_token,
            user,
        )

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)

    # ── CLI ────────────────────────────────────────────────────────────────
    from riya_backend.app.cli import register_commands
    register_commands(app)

    app.logger.info("Application created with config '%s'", config_name)
    return app


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so individual route files only specify
    the path relative to their resource.
    """
    from riya_backend.app.routes.auth import auth_bp
    from riya_backend.app.routes.orders import orders_bp
    from riya_backend.app.routes.polling import polling_bp

    app.register_blueprint(auth_bp,    url_prefix="/api/v1/auth")
    app.register_blueprint(polling_bp, url_prefix="/api/v1/polling")
    app.register_blueprint(orders_bp,  url_prefix="/api/v1/orders")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD / registered-code responses (400)
      HTTPException   → werkzeug errors (unknown URL, bad JSON, wrong method)
                        in the same envelope
      Exception       → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces never leave the server.
    """
    from riya_backend.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.
        """
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST error is returned. When the message is itself a
        registered ErrorCode constant (e.g. INVALID_TIMESTAMP) it becomes the
        code and a default message is substituted.
        """
        messages = error.messages  # e.g. {"last_update": ["INVALID_TIMESTAMP"]}

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None

                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                elif isinstance(field_errors, dict):
                    # Nested errors, e.g. {"notification_ids": {0: ["Not a valid integer."]}}
                    first = next(iter(field_errors.values()), ["Invalid value."])
                    raw_message = first[0] if isinstance(first, list) and first else str(first)
                else:
                    raw_message = str(field_errors)

                if raw_message in vars(ErrorCode).values():
                    code = raw_message
                elif str(raw_message).startswith("Missing data for required field"):
                    code = ErrorCode.MISSING_FIELD
                else:
                    code = ErrorCode.INVALID_FIELD
                break
        elif isinstance(messages, list):
            raw_message = messages[0] if messages else "Invalid input."
            if raw_message in vars(ErrorCode).values():
                code = raw_message
            elif str(raw_message).startswith("Missing data for required field"):
                code = ErrorCode.MISSING_FIELD

        response_body = {
            "success": False,
            "error": {
                "code": code,
                "message": raw_message if raw_message not in vars(ErrorCode).values()
                else _code_to_message(code),
            },
        }
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        status = error.code or 500
        code = {
            400: ErrorCode.MALFORMED_REQUEST,
            404: ErrorCode.RESOURCE_NOT_FOUND,
            405: ErrorCode.METHOD_NOT_ALLOWED,
        }.get(status, ErrorCode.INTERNAL_ERROR)
        return jsonify({
            "success": False,
            "error": {"code": code, "message": error.description or error.name},
        }), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        The full traceback is logged; it is never returned to the client.
        """
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "success": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            },
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself.
    """
    _messages = {
        "INVALID_TIMESTAMP": "last_update must be an ISO-8601 timestamp.",
        "INVALID_UPDATE_TYPE": (
            "types may only contain order_status, payment_status, "
            "notification and system_alert."
        ),
    }
    return _messages.get(code, "Invalid input.")
