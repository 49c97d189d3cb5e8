"""
schemas/polling_schema.py — Marshmallow schemas for polling endpoints.

Validation responsibility:
  - This file: ISO-8601 watermark parsing (INVALID_TIMESTAMP), type filter
    values (INVALID_UPDATE_TYPE), notification id lists, admin notification
    payload shape.
  - services/polling_service.py: order existence/ownership, user existence.

Query string handling:
  last_update and types arrive as strings. Empty values are treated as
  absent so "?last_update=&types=" behaves like a first poll with no filter.
  Unknown query parameters are ignored.
"""

from __future__ import annotations

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    pre_load,
    validate,
    validates,
)

from riya_backend.app.errors import ErrorCode
from riya_backend.app.models.notification import NOTIFICATION_TYPES
from riya_backend.app.time_utils import parse_iso_datetime

MAX_MARK_READ_IDS = 500
# Upper bound of the INTEGER primary key columns.
MAX_ROW_ID = 2**31 - 1


def _split_types(value: str) -> list[str]:
    return [t.strip() for t in value.split(",") if t.strip()]


class UpdatesQuerySchema(Schema):
    """
    GET /polling/updates?last_update=<ISO8601>&types=<comma-list>
    GET /polling/orders/<id>/updates?last_update=<ISO8601>

    Loads to {"last_seen": datetime | None, "types": list[str]}.
    """

    class Meta:
        unknown = EXCLUDE

    last_update = fields.Str(load_default=None)
    types = fields.Str(load_default=None)

    @pre_load
    def drop_empty(self, data, **kwargs):
        return {k: v for k, v in dict(data).items() if v not in (None, "")}

    @validates("last_update")
    def validate_last_update(self, value, **kwargs) -> None:
        if value is None:
            return
        try:
            parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(ErrorCode.INVALID_TIMESTAMP)

    @validates("types")
    def validate_types(self, value, **kwargs) -> None:
        if value is None:
            return
        if any(t not in NOTIFICATION_TYPES for t in _split_types(value)):
            raise ValidationError(ErrorCode.INVALID_UPDATE_TYPE)

    @post_load
    def to_cursor(self, data: dict, **kwargs) -> dict:
        types = data.get("types")
        return {
            "last_seen": parse_iso_datetime(data.get("last_update")),
            "types": _split_types(types) if types else [],
        }


class MarkReadSchema(Schema):
    """POST /polling/notifications/read"""

    notification_ids = fields.List(
        fields.Int(validate=validate.Range(
            min=1,
            max=MAX_ROW_ID,
            error="Notification ids must be positive integers no larger than {max}.",
        )),
        required=True,
        validate=validate.Length(
            min=1,
            max=MAX_MARK_READ_IDS,
            error=f"notification_ids must contain between 1 and {MAX_MARK_READ_IDS} ids.",
        ),
    )


class CreateNotificationSchema(Schema):
    """
    POST /polling/notifications  (admin roles only)

    User existence is checked in polling_service.create_notification().
    """

    user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(
            min=1,
            max=MAX_ROW_ID,
            error="user_id must be a positive integer no larger than {max}.",
        ),
    )
    type = fields.Str(
        required=True,
        validate=validate.OneOf(NOTIFICATION_TYPES, error=ErrorCode.INVALID_UPDATE_TYPE),
    )
    title = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    message = fields.Str(required=True, validate=validate.Length(min=1))
    data = fields.Dict(keys=fields.Str(), load_default=dict)
    order_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, max=MAX_ROW_ID),
    )
