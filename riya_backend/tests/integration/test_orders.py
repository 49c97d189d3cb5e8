"""
tests/integration/test_orders.py — Order endpoints and the notification they emit.

Endpoints covered:
  POST  /orders                    → 201
  GET   /orders                    → 200
  GET   /orders/<id>               → 200
  PATCH /orders/<id>/status        → 200  (admin roles)
  PATCH /orders/<id>/payment-status → 200 (admin roles)

A status change is committed before its notification is written; a failing
notification write must leave the status change in place.
"""

from __future__ import annotations

import re

import pytest
from sqlalchemy.exc import OperationalError

from riya_backend.app.services import polling_service

from .conftest import auth_headers, make_order, make_staff, poll, register


@pytest.fixture
def admin_token(app, client):
    return make_staff(app, client, "admin", "admin")["tokens"]["access_token"]


def _set_status(client, token, order_id, status, notes=None):
    payload = {"status": status}
    if notes is not None:
        payload["notes"] = notes
    return client.patch(
        f"/api/v1/orders/{order_id}/status",
        json=payload,
        headers=auth_headers(token),
    )


def _set_payment(client, token, order_id, payment_status):
    return client.patch(
        f"/api/v1/orders/{order_id}/payment-status",
        json={"payment_status": payment_status},
        headers=auth_headers(token),
    )


# ═══════════════════════════════════════════════════════════════════════════
# POST /orders, GET /orders, GET /orders/<id>
# ═══════════════════════════════════════════════════════════════════════════

class TestOrderCrud:

    def test_create_order_returns_pending_order(self, client):
        alice = register(client, "alice")
        order = make_order(client, alice["tokens"]["access_token"], total_amount="250.5")
        assert re.fullmatch(r"RC\d{14}", order["order_number"])
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["total_amount"] == "250.50"
        assert order["user_id"] == alice["user"]["id"]

    def test_invalid_payment_method_returns_400(self, client):
        token = register(client, "alice")["tokens"]["access_token"]
        resp = client.post(
            "/api/v1/orders/",
            json={"total_amount": "10.00", "payment_method": "barter"},
            headers=auth_headers(token),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "payment_method"

    def test_three_decimal_amount_is_rejected(self, client):
        token = register(client, "alice")["tokens"]["access_token"]
        resp = client.post(
            "/api/v1/orders/",
            json={"total_amount": "10.005", "payment_method": "cod"},
            headers=auth_headers(token),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "total_amount"

    def test_list_orders_returns_only_callers_orders(self, client):
        alice_token = register(client, "alice")["tokens"]["access_token"]
        bob_token = register(client, "bob")["tokens"]["access_token"]
        first = make_order(client, alice_token)
        second = make_order(client, alice_token)
        make_order(client, bob_token)

        resp = client.get("/api/v1/orders/", headers=auth_headers(alice_token))
        assert resp.status_code == 200
        ids = [o["id"] for o in resp.get_json()["data"]]
        assert sorted(ids) == sorted([first["id"], second["id"]])

    def test_get_order_by_owner_and_admin(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)

        own = client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers(token))
        assert own.status_code == 200
        assert own.get_json()["data"]["order_number"] == order["order_number"]

        admin = client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers(admin_token))
        assert admin.status_code == 200

    def test_get_other_customers_order_returns_403(self, client):
        alice_token = register(client, "alice")["tokens"]["access_token"]
        bob_token = register(client, "bob")["tokens"]["access_token"]
        order = make_order(client, alice_token)

        resp = client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers(bob_token))
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_get_missing_order_returns_404(self, client):
        token = register(client, "alice")["tokens"]["access_token"]
        resp = client.get("/api/v1/orders/555555", headers=auth_headers(token))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "ORDER_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# PATCH /orders/<id>/status
# ═══════════════════════════════════════════════════════════════════════════

class TestOrderStatus:

    def test_status_change_notifies_owner(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)

        resp = _set_status(client, admin_token, order["id"], "confirmed", notes="Packed today")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["order"]["status"] == "confirmed"

        notification = data["notification"]
        assert notification["type"] == "order_status"
        assert notification["title"] == "Order Confirmed"
        assert order["order_number"] in notification["message"]
        assert notification["data"]["previous_status"] == "pending"
        assert notification["data"]["status"] == "confirmed"
        assert notification["data"]["notes"] == "Packed today"

        updates = poll(client, token).get_json()["data"]["updates"]
        assert [u["id"] for u in updates] == [notification["id"]]

    def test_full_lifecycle_priorities(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)

        for status in ("confirmed", "processing", "shipped", "delivered"):
            assert _set_status(client, admin_token, order["id"], status).status_code == 200

        updates = poll(client, token).get_json()["data"]["updates"]
        assert [(u["data"]["status"], u["priority"]) for u in updates] == [
            ("confirmed", "normal"),
            ("processing", "normal"),
            ("shipped", "high"),
            ("delivered", "high"),
        ]

    def test_invalid_transition_returns_400(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)

        resp = _set_status(client, admin_token, order["id"], "delivered")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_STATUS_TRANSITION"

        # nothing was written
        assert poll(client, token).get_json()["data"]["updates"] == []

    def test_unknown_status_returns_400(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)
        resp = _set_status(client, admin_token, order["id"], "teleported")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_ORDER_STATUS"

    def test_customer_cannot_change_status(self, client):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)
        resp = _set_status(client, token, order["id"], "confirmed")
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_missing_order_returns_404(self, client, admin_token):
        resp = _set_status(client, admin_token, 777777, "confirmed")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "ORDER_NOT_FOUND"

    def test_notification_failure_does_not_undo_status_change(
            self, client, admin_token, monkeypatch,
    ):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)

        def _broken(*args, **kwargs):
            raise OperationalError("INSERT INTO notifications", {}, Exception("database is locked"))

        monkeypatch.setattr(polling_service, "create_notification", _broken)

        resp = _set_status(client, admin_token, order["id"], "confirmed")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["order"]["status"] == "confirmed"
        assert data["notification"] is None

        monkeypatch.undo()
        reread = client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers(token))
        assert reread.get_json()["data"]["status"] == "confirmed"
        assert poll(client, token).get_json()["data"]["updates"] == []


# ═══════════════════════════════════════════════════════════════════════════
# PATCH /orders/<id>/payment-status
# ═══════════════════════════════════════════════════════════════════════════

class TestPaymentStatus:

    def test_completed_payment_is_high_priority(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token, payment_method="online")

        resp = _set_payment(client, admin_token, order["id"], "completed")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["order"]["payment_status"] == "completed"
        assert data["notification"]["type"] == "payment_status"
        assert data["notification"]["priority"] == "high"
        assert data["notification"]["data"]["amount"] == "1499.00"
        assert data["notification"]["data"]["payment_method"] == "online"

    def test_refunded_payment_is_normal_priority(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)
        data = _set_payment(client, admin_token, order["id"], "refunded").get_json()["data"]
        assert data["notification"]["title"] == "Payment Refunded"
        assert data["notification"]["priority"] == "normal"

    def test_pending_payment_writes_no_notification(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)

        resp = _set_payment(client, admin_token, order["id"], "pending")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["notification"] is None
        assert poll(client, token).get_json()["data"]["updates"] == []

    def test_unknown_payment_status_returns_400(self, client, admin_token):
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)
        resp = _set_payment(client, admin_token, order["id"], "maybe")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_PAYMENT_STATUS"

    def test_manager_may_update_payment(self, app, client):
        manager_token = make_staff(app, client, "manager", "manager")["tokens"]["access_token"]
        token = register(client, "alice")["tokens"]["access_token"]
        order = make_order(client, token)
        resp = _set_payment(client, manager_token, order["id"], "failed")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["notification"]["priority"] == "high"
