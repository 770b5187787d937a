"""
schemas/transfer_schema.py — Marshmallow schema for transfer pay-state endpoints.

POST /transfers/:id/revert takes no body, so it has no schema.
Who may confirm or retract a payment is decided in settlement_service.py.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, fields

from backend.app.errors import ErrorCode
from backend.app.models.enums import PaymentMethod


class MarkPaidSchema(Schema):
    """
    POST /transfers/:id/pay

    method: how the money moved. Defaults to cash when omitted.
    """

    method = fields.Enum(
        PaymentMethod,
        load_default=PaymentMethod.CASH,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_PAYMENT_METHOD},
    )
