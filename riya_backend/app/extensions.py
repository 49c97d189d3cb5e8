"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy as a module-level object so it can be imported
anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` from here wherever needed.

    from riya_backend.app.extensions import db

Do not pass the app object directly to SQLAlchemy() at import time — that
would prevent running tests with a separate test app instance.

The typed component settings (TokenConfig, LockoutConfig, PollingConfig) are
attached to the app under SETTINGS_KEY by the factory. Routes and middleware
fetch them with get_settings() and pass them to services as arguments.
"""

from __future__ import annotations

from flask import current_app
from flask_sqlalchemy import SQLAlchemy

from riya_backend.config import Settings

db = SQLAlchemy()

SETTINGS_KEY = "riya_settings"


def get_settings() -> Settings:
    """Returns the Settings bundle of the active application."""
    return current_app.extensions[SETTINGS_KEY]
