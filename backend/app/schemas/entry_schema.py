"""
schemas/entry_schema.py — Marshmallow schemas for ledger entry endpoints.

Validation responsibility:
  - This file:
      - Field types, enum values (INVALID_ENTRY_KIND)
      - amount must parse as a decimal number (JSON number or numeric string)
      - PATCH must change at least one field
  - services/integrity_service.py (called from ledger_service.py):
      - AMOUNT_OUT_OF_RANGE (400)       — bounds are app config, not schema
      - INVALID_AMOUNT_PRECISION (400)  — more than 2 decimal places
    Both messages name the bound and the actual value, which a schema-level
    error code cannot.
  - services/ledger_service.py:
      - PARTICIPANT_NOT_FOUND (404)       — requires DB roster lookup
      - SETTLEMENT_ALREADY_COMPUTED (409) — requires DB state
      - FORBIDDEN (403)                   — requires the entry's recorder

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from backend.app.errors import ErrorCode
from backend.app.models.enums import EntryKind


class CreateEntrySchema(Schema):
    """
    POST /sessions/:id/entries

    kind: "debit" is a buy-in, "credit" a cash-out.
    """

    participant_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="participant_id must be a positive integer."),
    )

    kind = fields.Enum(
        EntryKind,
        required=True,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_ENTRY_KIND},
    )

    # No places= here: quantizing would silently round 10.123 to 10.12.
    amount = fields.Decimal(required=True)


class PatchEntrySchema(Schema):
    """
    PATCH /entries/:id

    All fields are optional. Only provided fields are updated.
    Changing participant_id moves the entry to another participant of the
    same session; both participants' totals are recomputed.
    """

    participant_id = fields.Int(
        required=False,
        strict=True,
        validate=validate.Range(min=1, error="participant_id must be a positive integer."),
    )

    kind = fields.Enum(
        EntryKind,
        required=False,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_ENTRY_KIND},
    )

    amount = fields.Decimal(required=False)

    @validates_schema
    def validate_not_empty(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError(
                "Provide at least one of participant_id, kind or amount."
            )
