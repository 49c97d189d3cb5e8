"""
schemas/order_schema.py — Marshmallow schemas for order endpoints.

Status values and transitions are validated in order_service.py so the
error codes (INVALID_ORDER_STATUS, INVALID_STATUS_TRANSITION,
INVALID_PAYMENT_STATUS) are the same for every caller.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from riya_backend.app.models.order import PAYMENT_METHODS


def _validate_total_amount(value: Decimal) -> None:
    """Non-negative, at most 2 decimal places. Rejected, never rounded."""
    if value < Decimal("0"):
        raise ValidationError("Amount must not be negative.")
    if value.as_tuple().exponent < -2:
        raise ValidationError("Amount must have at most 2 decimal places.")


class CreateOrderSchema(Schema):
    """POST /orders"""

    total_amount = fields.Decimal(required=True, validate=_validate_total_amount)
    payment_method = fields.Str(
        required=True,
        validate=validate.OneOf(PAYMENT_METHODS),
    )


class UpdateOrderStatusSchema(Schema):
    """PATCH /orders/<id>/status  (admin roles only)"""

    status = fields.Str(required=True)
    notes = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=1000))


class UpdatePaymentStatusSchema(Schema):
    """PATCH /orders/<id>/payment-status  (admin roles only)"""

    payment_status = fields.Str(required=True)
