"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against TEST_DATABASE_URL, or in-memory SQLite when unset.
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)          → {"user": {...}, "tokens": {...}}
  - login(client, ...)             → {"user": {...}, "tokens": {...}}
  - auth_headers(token)            → {"Authorization": "Bearer <token>"}
  - make_staff(app, client, ...)   → login data for an admin/manager/superadmin
  - make_notification(...)         → HTTP response of the admin create endpoint
  - make_order(client, token)      → order dict
  - poll(client, token, ...)       → HTTP response of GET /polling/updates

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from riya_backend.app import create_app
from riya_backend.app.extensions import db as _db
from riya_backend.app.extensions import get_settings
from riya_backend.app.services import auth_service

PASSWORD = "Password1!"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test
    session, creates all tables, and drops them at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test in FK-safe order.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM notifications"))
            conn.execute(text("DELETE FROM orders"))
            conn.execute(text("DELETE FROM password_resets"))
            conn.execute(text("DELETE FROM refresh_tokens"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(
    client,
    name: str = "alice",
    email: str | None = None,
    password: str = PASSWORD,
) -> dict:
    """
    Registers a new customer and returns the response data dict.
    Returns: {"user": {...}, "tokens": {"access_token", "refresh_token", ...}}
    """
    if email is None:
        email = f"{name}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={
            "email": email,
            "password": password,
            "first_name": name.capitalize(),
            "last_name": "Tester",
        },
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, email: str, password: str = PASSWORD) -> dict:
    """
    Logs in a user and returns the response data dict.
    Returns: {"user": {...}, "tokens": {...}}
    """
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_staff(app, client, name: str = "admin", role: str = "admin") -> dict:
    """
    Creates an account with an administrative role (the public register
    endpoint only creates customers) and logs it in.
    """
    email = f"{name}@test.com"
    with app.app_context():
        auth_service.create_user(
            email=email,
            password=PASSWORD,
            first_name=name.capitalize(),
            last_name="Staff",
            role=role,
            session=_db.session,
            settings=get_settings(),
        )
        _db.session.commit()
    return login(client, email)


def make_notification(
    client,
    admin_token: str,
    user_id: int,
    type_: str = "system_alert",
    title: str = "Maintenance",
    message: str = "Scheduled maintenance tonight.",
    data: dict | None = None,
):
    """Creates a notification through the admin endpoint. Returns the HTTP response."""
    payload = {
        "user_id": user_id,
        "type": type_,
        "title": title,
        "message": message,
    }
    if data is not None:
        payload["data"] = data
    return client.post(
        "/api/v1/polling/notifications",
        json=payload,
        headers=auth_headers(admin_token),
    )


def make_order(client, token: str, total_amount: str = "1499.00", payment_method: str = "cod") -> dict:
    """Creates an order for the token owner and returns the order dict."""
    resp = client.post(
        "/api/v1/orders/",
        json={"total_amount": total_amount, "payment_method": payment_method},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_order failed: {resp.get_json()}"
    return resp.get_json()["data"]


def poll(client, token: str, last_update: str | None = None, types: str | None = None):
    """GET /polling/updates with optional watermark and type filter."""
    query = {}
    if last_update is not None:
        query["last_update"] = last_update
    if types is not None:
        query["types"] = types
    return client.get(
        "/api/v1/polling/updates",
        query_string=query,
        headers=auth_headers(token),
    )
