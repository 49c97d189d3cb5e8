"""
services/polling_service.py — Incremental notification delivery for polling clients.

Clients hold a watermark (the timestamp of the last event they consumed) and
call get_updates() periodically. The server keeps no subscription state;
every call is an independent query:

    user_id = U AND created_at > watermark [AND type IN types]
    ORDER BY created_at, id

The watermark is an exclusive lower bound. The returned `last_update` is the
created_at of the last event in the batch, or the watermark that was passed
in when nothing matched, so it never moves backwards and replaying a call
before new events arrive returns an empty batch with the same watermark.

First poll (no watermark): the newest PollingConfig.initial_window events,
returned in ascending order.

Interval hint (advisory only):
  fast   — a high-priority event is in the batch, or the user has
           order/payment events within PollingConfig.active_lookback
  slow   — the user's newest event is older than idle_threshold, or none exist
  normal — otherwise

Write side:
  create_notification() is the validated append used by the admin endpoint.
  record_notification() is the best-effort variant for domain code. It runs
  after the domain transaction has committed, commits on its own, retries
  once, and logs and swallows failures. Delivery is therefore at-most-once:
  a crash between the domain commit and this write drops the notification.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import inspect, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from riya_backend.app.errors import AppError, ErrorCode, forbidden
from riya_backend.app.models.notification import (
    NOTIFICATION_TYPES,
    TYPE_ORDER_STATUS,
    TYPE_PAYMENT_STATUS,
    TYPE_SYSTEM_ALERT,
    Notification,
)
from riya_backend.app.models.order import Order
from riya_backend.app.models.user import ADMIN_ROLES, User
from riya_backend.app.time_utils import as_utc, to_iso, utcnow
from riya_backend.config import PollingConfig

logger = logging.getLogger(__name__)

PRIORITY_HIGH   = "high"
PRIORITY_NORMAL = "normal"
PRIORITY_LOW    = "low"

ACTIVITY_TYPES = (TYPE_ORDER_STATUS, TYPE_PAYMENT_STATUS)

_HIGH_ORDER_STATUSES   = ("shipped", "delivered", "cancelled")
_NORMAL_ORDER_STATUSES = ("confirmed", "processing")
_HIGH_PAYMENT_STATUSES = ("completed", "failed")

API_PREFIX = "/api/v1/polling"


# ── Priority ───────────────────────────────────────────────────────────────

def priority_for(notification_type: str, data: dict | None) -> str:
    """
    Priority shown to clients and used by the interval hint.

      order_status   — shipped/delivered/cancelled high, confirmed/processing
                       normal, anything else low
      payment_status — completed/failed high, anything else normal
      system_alert   — high
      notification   — normal
    """
    data = data or {}
    status = data.get("status")
    if notification_type == TYPE_ORDER_STATUS:
        if status in _HIGH_ORDER_STATUSES:
            return PRIORITY_HIGH
        if status in _NORMAL_ORDER_STATUSES:
            return PRIORITY_NORMAL
        return PRIORITY_LOW
    if notification_type == TYPE_PAYMENT_STATUS:
        status = data.get("payment_status", status)
        return PRIORITY_HIGH if status in _HIGH_PAYMENT_STATUSES else PRIORITY_NORMAL
    if notification_type == TYPE_SYSTEM_ALERT:
        return PRIORITY_HIGH
    return PRIORITY_NORMAL


def serialize_notification(notification: Notification) -> dict:
    data = notification.data or {}
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": data,
        "timestamp": to_iso(notification.created_at),
        "read": bool(notification.is_read),
        "priority": priority_for(notification.type, data),
    }


# ── Private helpers ────────────────────────────────────────────────────────

def _validate_types(types: Iterable[str] | None) -> list[str]:
    types = list(types or [])
    unknown = [t for t in types if t not in NOTIFICATION_TYPES]
    if unknown:
        raise AppError(
            ErrorCode.INVALID_UPDATE_TYPE,
            f"Unknown update type '{unknown[0]}'. "
            f"Allowed: {', '.join(NOTIFICATION_TYPES)}.",
            400,
            field="types",
        )
    return types


def _fetch_events(
        session: Session,
        config: PollingConfig,
        filters: list,
        last_seen: datetime | None,
) -> list[Notification]:
    stmt = select(Notification).where(*filters)

    if last_seen is None:
        rows = session.execute(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(config.initial_window)
        ).scalars().all()
        return list(reversed(rows))

    return list(session.execute(
        stmt.where(Notification.created_at > last_seen)
        .order_by(Notification.created_at.asc(), Notification.id.asc())
    ).scalars().all())


def _recommended_interval(
        user_id: int,
        updates: list[dict],
        session: Session,
        config: PollingConfig,
        now: datetime,
) -> int:
    if any(u["priority"] == PRIORITY_HIGH for u in updates):
        return config.fast_interval

    recent_activity = session.execute(
        select(Notification.id)
        .where(
            Notification.user_id == user_id,
            Notification.type.in_(ACTIVITY_TYPES),
            Notification.created_at >= now - config.active_lookback,
        )
        .limit(1)
    ).scalar_one_or_none()
    if recent_activity is not None:
        return config.fast_interval

    newest = session.execute(
        select(Notification.created_at)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if newest is None or as_utc(newest) < now - config.idle_threshold:
        return config.slow_interval

    return config.normal_interval


def _build_response(
        user_id: int,
        events: list[Notification],
        last_seen: datetime | None,
        session: Session,
        config: PollingConfig,
        now: datetime,
) -> dict:
    updates = [serialize_notification(n) for n in events]
    watermark = as_utc(events[-1].created_at) if events else last_seen
    return {
        "updates": updates,
        "last_update": to_iso(watermark),
        "has_updates": bool(updates),
        "polling_interval": _recommended_interval(user_id, updates, session, config, now),
    }


# ── Public service functions ───────────────────────────────────────────────

def get_updates(
        user_id: int,
        last_seen: datetime | None,
        types: Iterable[str] | None,
        session: Session,
        config: PollingConfig,
        now: datetime | None = None,
) -> dict:
    """
    Returns the events of user_id strictly newer than last_seen.

    Raises:
      AppError(INVALID_UPDATE_TYPE, 400) — a type filter value is unknown

    Returns: {"updates": [...], "last_update": str|None,
              "has_updates": bool, "polling_interval": int}
    """
    now = now or utcnow()
    types = _validate_types(types)
    last_seen = as_utc(last_seen)

    filters = [Notification.user_id == user_id]
    if types:
        filters.append(Notification.type.in_(types))

    events = _fetch_events(session, config, filters, last_seen)
    return _build_response(user_id, events, last_seen, session, config, now)


def get_order_updates(
        user_id: int,
        role: str,
        order_id: int,
        last_seen: datetime | None,
        session: Session,
        config: PollingConfig,
        now: datetime | None = None,
) -> dict:
    """
    Same mechanics as get_updates(), restricted to events about one order.

    The caller must own the order or hold one of ADMIN_ROLES. Events are
    read from the order owner's timeline.

    Raises:
      AppError(ORDER_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)
    """
    now = now or utcnow()
    order = session.get(Order, order_id)
    if order is None:
        raise AppError(
            ErrorCode.ORDER_NOT_FOUND,
            f"Order {order_id} not found.",
            404,
        )
    if order.user_id != user_id and role not in ADMIN_ROLES:
        raise forbidden("You do not have access to this order.")

    last_seen = as_utc(last_seen)
    filters = [
        Notification.user_id == order.user_id,
        Notification.order_id == order.id,
    ]
    events = _fetch_events(session, config, filters, last_seen)
    return _build_response(order.user_id, events, last_seen, session, config, now)


def create_notification(
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        session: Session,
        data: dict | None = None,
        order_id: int | None = None,
) -> dict:
    """
    Appends one event to a user's timeline. Flushes; the caller commits.

    Raises:
      AppError(INVALID_UPDATE_TYPE, 400)
      AppError(USER_NOT_FOUND, 404)
      AppError(ORDER_NOT_FOUND, 404)
      AppError(INVALID_FIELD, 400)       — order belongs to another user
    """
    _validate_types([notification_type])

    if session.get(User, user_id) is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
            field="user_id",
        )

    if order_id is not None:
        order = session.get(Order, order_id)
        if order is None:
            raise AppError(
                ErrorCode.ORDER_NOT_FOUND,
                f"Order {order_id} not found.",
                404,
                field="order_id",
            )
        # Order timelines are scoped to the owner.
        if order.user_id != user_id:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                f"Order {order_id} does not belong to user {user_id}.",
                400,
                field="order_id",
            )

    notification = Notification(
        user_id=user_id,
        order_id=order_id,
        type=notification_type,
        title=title,
        message=message,
        data=dict(data or {}),
        is_read=False,
        created_at=utcnow(),
    )
    session.add(notification)
    session.flush()

    logger.info(
        "Notification created: id=%s user_id=%s type=%s",
        notification.id,
        user_id,
        notification_type,
    )
    return serialize_notification(notification)


def record_notification(
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        session: Session,
        data: dict | None = None,
        order_id: int | None = None,
) -> dict | None:
    """
    Best-effort append for domain write paths. Must be called after the
    domain change has been committed.

    Database failures are retried once and then logged; invalid input is
    logged without retry. Never raises. Returns the notification dict, or
    None when nothing was written.
    """
    for attempt in (1, 2):
        try:
            result = create_notification(
                user_id, notification_type, title, message, session,
                data=data, order_id=order_id,
            )
            session.commit()
            return result
        except AppError as exc:
            session.rollback()
            logger.error(
                "Notification rejected: user_id=%s type=%s code=%s",
                user_id, notification_type, exc.code,
            )
            return None
        except SQLAlchemyError:
            session.rollback()
            if attempt == 1:
                logger.warning(
                    "Notification write failed, retrying: user_id=%s type=%s",
                    user_id, notification_type,
                )
            else:
                logger.exception(
                    "Notification dropped after retry: user_id=%s type=%s",
                    user_id, notification_type,
                )
    return None


def mark_read(user_id: int, notification_ids: Iterable[int], session: Session) -> int:
    """
    Marks the given notifications read. Ids that do not belong to user_id
    are ignored without error. Returns the number of rows updated.
    """
    ids = sorted({int(i) for i in notification_ids})
    if not ids:
        return 0

    result = session.execute(
        update(Notification)
        .where(
            Notification.id.in_(ids),
            Notification.user_id == user_id,
        )
        .values(is_read=True, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    session.flush()
    logger.info("Notifications marked read: user_id=%s count=%d", user_id, result.rowcount)
    return result.rowcount


def polling_config(config: PollingConfig) -> dict:
    """Client-facing description of intervals, update types and endpoints."""
    return {
        "intervals": {
            "fast": config.fast_interval,
            "normal": config.normal_interval,
            "slow": config.slow_interval,
        },
        "update_types": list(NOTIFICATION_TYPES),
        "endpoints": {
            "updates": f"{API_PREFIX}/updates",
            "order_updates": f"{API_PREFIX}/orders/{{id}}/updates",
            "mark_read": f"{API_PREFIX}/notifications/read",
        },
        "recommendations": {
            "use_fast_polling_for": ["active_order_tracking", "payment_processing"],
            "use_normal_polling_for": ["general_updates", "notifications"],
            "use_slow_polling_for": ["background_sync", "idle_state"],
        },
    }


def health_check(session: Session) -> tuple[dict, bool]:
    """Probes the database and the notifications table. Returns (report, healthy)."""
    checks = {"database": "ok", "notifications_table": "ok"}
    healthy = True

    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Polling health check: database unreachable")
        session.rollback()
        checks["database"] = "failed"
        checks["notifications_table"] = "unknown"
        healthy = False
    else:
        if not inspect(session.get_bind()).has_table(Notification.__tablename__):
            checks["notifications_table"] = "missing"
            healthy = False

    report = {
        "status": "healthy" if healthy else "unhealthy",
        "service": "polling",
        "timestamp": to_iso(utcnow()),
        "checks": checks,
    }
    return report, healthy
