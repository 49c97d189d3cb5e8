"""
routes/polling.py — Polling update route handlers.

Layer rules:
  - Parse query/body, validate with a schema, call ONE service function,
    commit when something was written, return the envelope.
  - "No updates" is a normal 200 with an empty list, never an error.

Endpoints (url_prefix=/api/v1/polling):
  GET    /updates?last_update&types        → 200  (auth)
  GET    /orders/<id>/updates?last_update  → 200  (auth, owner or admin roles)
  POST   /notifications/read               → 200  (auth)
  POST   /notifications                    → 201  (admin roles)
  GET    /config                           → 200  (auth)
  GET    /health                           → 200 | 503
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from riya_backend.app.errors import AppError, ErrorCode
from riya_backend.app.extensions import db, get_settings
from riya_backend.app.middleware.auth_middleware import require_auth, require_role
from riya_backend.app.models.user import ADMIN_ROLES
from riya_backend.app.schemas.polling_schema import (
    CreateNotificationSchema,
    MarkReadSchema,
    UpdatesQuerySchema,
)
from riya_backend.app.services import polling_service

polling_bp = Blueprint("polling", __name__)


@polling_bp.route("/updates", methods=["GET"])
@require_auth
def get_updates():
    """GET /polling/updates — Events newer than last_update for the caller."""
    cursor = UpdatesQuerySchema().load(request.args.to_dict())
    result = polling_service.get_updates(
        user_id=g.user_id,
        last_seen=cursor["last_seen"],
        types=cursor["types"],
        session=db.session,
        config=get_settings().polling,
    )
    return jsonify({"success": True, "data": result}), 200


@polling_bp.route("/orders/<int:order_id>/updates", methods=["GET"])
@require_auth
def get_order_updates(order_id: int):
    """GET /polling/orders/:id/updates — Events about one order."""
    cursor = UpdatesQuerySchema().load(request.args.to_dict())
    result = polling_service.get_order_updates(
        user_id=g.user_id,
        role=g.role,
        order_id=order_id,
        last_seen=cursor["last_seen"],
        session=db.session,
        config=get_settings().polling,
    )
    return jsonify({"success": True, "data": result}), 200


@polling_bp.route("/notifications/read", methods=["POST"])
@require_auth
def mark_notifications_read():
    """POST /polling/notifications/read — Ids not owned by the caller are ignored."""
    data = MarkReadSchema().load(request.get_json(force=True) or {})
    updated = polling_service.mark_read(
        user_id=g.user_id,
        notification_ids=data["notification_ids"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "success": True,
        "data": {"message": "Notifications marked as read successfully.", "updated": updated},
    }), 200


@polling_bp.route("/notifications", methods=["POST"])
@require_role(*ADMIN_ROLES)
def create_notification():
    """POST /polling/notifications — Admin-created event for any user."""
    data = CreateNotificationSchema().load(request.get_json(force=True) or {})
    result = polling_service.create_notification(
        user_id=data["user_id"],
        notification_type=data["type"],
        title=data["title"],
        message=data["message"],
        data=data["data"],
        order_id=data["order_id"],
        session=db.session,
    )
    db.session.commit()
    current_app.logger.info(
        "Notification created by admin: admin_id=%s user_id=%s type=%s",
        g.user_id, data["user_id"], data["type"],
    )
    return jsonify({"success": True, "data": result}), 201


@polling_bp.route("/config", methods=["GET"])
@require_auth
def get_config():
    """GET /polling/config — Intervals, update types and endpoints for clients."""
    result = polling_service.polling_config(get_settings().polling)
    return jsonify({"success": True, "data": result}), 200


@polling_bp.route("/health", methods=["GET"])
def health():
    """GET /polling/health — Database probe. 503 when unhealthy."""
    report, healthy = polling_service.health_check(db.session)
    if healthy:
        return jsonify({"success": True, "data": report}), 200

    body = AppError(
        ErrorCode.SERVICE_UNAVAILABLE,
        "Polling service is unhealthy.",
        503,
    ).to_dict()
    body["data"] = report
    return jsonify(body), 503
