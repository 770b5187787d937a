"""
schemas/session_schema.py — Marshmallow schemas for session and roster endpoints.

Validation responsibility:
  - This file: field types, lengths, non-empty names.
  - services/session_service.py:
      - FORBIDDEN (403)                  — host check needs the session row.
      - SESSION_ALREADY_CLOSED (409)     — requires DB state.
      - PARTICIPANT_ALREADY_ADDED (409)  — requires DB roster lookup.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    """
    validate.Length(min=1) accepts "   ". Mirrors the DB
    CHECK(LENGTH(TRIM(name)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateSessionSchema(Schema):
    """POST /sessions — the caller becomes the host."""

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )


class AddParticipantSchema(Schema):
    """
    POST /sessions/:id/participants

    user_id is an identity supplied by the roster collaborator; whether that
    user exists is not this service's concern.
    """

    user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )
