"""
routes/orders.py — Order route handlers (status/payment write path).

Status changes commit the order first and only then record the polling
notification. record_notification() commits on its own and never raises,
so a notification failure cannot undo or fail the status change.

Endpoints (url_prefix=/api/v1/orders):
  POST   /                        → 201  (auth)
  GET    /                        → 200  (auth, caller's orders)
  GET    /<id>                    → 200  (auth, owner or admin roles)
  PATCH  /<id>/status             → 200  (admin roles)
  PATCH  /<id>/payment-status     → 200  (admin roles)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from riya_backend.app.extensions import db
from riya_backend.app.middleware.auth_middleware import require_auth, require_role
from riya_backend.app.models.user import ADMIN_ROLES
from riya_backend.app.schemas.order_schema import (
    CreateOrderSchema,
    UpdateOrderStatusSchema,
    UpdatePaymentStatusSchema,
)
from riya_backend.app.services import order_service, polling_service
from riya_backend.app.services.order_service import NotificationDraft

orders_bp = Blueprint("orders", __name__)


def _record(draft: NotificationDraft | None) -> dict | None:
    if draft is None:
        return None
    return polling_service.record_notification(
        user_id=draft.user_id,
        notification_type=draft.type,
        title=draft.title,
        message=draft.message,
        data=draft.data,
        order_id=draft.order_id,
        session=db.session,
    )


@orders_bp.route("/", methods=["POST"])
@require_auth
def create_order():
    """POST /orders — Create a pending order for the caller."""
    data = CreateOrderSchema().load(request.get_json(force=True) or {})
    result = order_service.create_order(
        user_id=g.user_id,
        total_amount=data["total_amount"],
        payment_method=data["payment_method"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"success": True, "data": result}), 201


@orders_bp.route("/", methods=["GET"])
@require_auth
def list_orders():
    """GET /orders — The caller's orders, newest first."""
    result = order_service.list_orders(user_id=g.user_id, session=db.session)
    return jsonify({"success": True, "data": result}), 200


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_auth
def get_order(order_id: int):
    """GET /orders/:id"""
    result = order_service.get_order(
        order_id=order_id,
        user_id=g.user_id,
        role=g.role,
        session=db.session,
    )
    return jsonify({"success": True, "data": result}), 200


@orders_bp.route("/<int:order_id>/status", methods=["PATCH"])
@require_role(*ADMIN_ROLES)
def update_order_status(order_id: int):
    """PATCH /orders/:id/status — Advance the order; notify its owner."""
    data = UpdateOrderStatusSchema().load(request.get_json(force=True) or {})
    order, draft = order_service.update_order_status(
        order_id=order_id,
        new_status=data["status"],
        notes=data.get("notes"),
        session=db.session,
    )
    db.session.commit()
    notification = _record(draft)
    return jsonify({
        "success": True,
        "data": {"order": order, "notification": notification},
    }), 200


@orders_bp.route("/<int:order_id>/payment-status", methods=["PATCH"])
@require_role(*ADMIN_ROLES)
def update_payment_status(order_id: int):
    """PATCH /orders/:id/payment-status — Set payment status; notify on completion, failure or refund."""
    data = UpdatePaymentStatusSchema().load(request.get_json(force=True) or {})
    order, draft = order_service.update_payment_status(
        order_id=order_id,
        payment_status=data["payment_status"],
        session=db.session,
    )
    db.session.commit()
    notification = _record(draft)
    return jsonify({
        "success": True,
        "data": {"order": order, "notification": notification},
    }), 200
