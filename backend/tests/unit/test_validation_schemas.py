"""
tests/unit/test_validation_schemas.py — Unit tests for all marshmallow schemas.

What this file proves:
  - Every schema accepts valid input without raising
  - Every schema rejects malformed input with a ValidationError
  - Enum fields report the registered error code (INVALID_ENTRY_KIND,
    INVALID_PAYMENT_METHOD)
  - amount is parsed to Decimal and never rounded by the schema; bounds and
    precision are integrity_service's job

Schemas inherit from marshmallow.Schema directly (not ma.Schema), so no
Flask application context is needed here.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from marshmallow import ValidationError

from backend.app.errors import ErrorCode
from backend.app.models.enums import EntryKind, PaymentMethod
from backend.app.schemas.entry_schema import CreateEntrySchema, PatchEntrySchema
from backend.app.schemas.session_schema import AddParticipantSchema, CreateSessionSchema
from backend.app.schemas.transfer_schema import MarkPaidSchema


# ═══════════════════════════════════════════════════════════════════════════
# CreateSessionSchema / AddParticipantSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateSessionSchema:

    def test_valid(self):
        assert CreateSessionSchema().load({"name": "Friday"}) == {"name": "Friday"}

    @pytest.mark.parametrize("name", ["", "   ", "x" * 101])
    def test_bad_names(self, name):
        with pytest.raises(ValidationError) as exc_info:
            CreateSessionSchema().load({"name": name})
        assert "name" in exc_info.value.messages

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            CreateSessionSchema().load({"name": "Friday", "host_user_id": 5})


class TestAddParticipantSchema:

    def test_valid(self):
        assert AddParticipantSchema().load({"user_id": 3}) == {"user_id": 3}

    @pytest.mark.parametrize("user_id", [0, -1, 1.5, "3"])
    def test_invalid(self, user_id):
        with pytest.raises(ValidationError):
            AddParticipantSchema().load({"user_id": user_id})


# ═══════════════════════════════════════════════════════════════════════════
# CreateEntrySchema
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateEntrySchema:

    def _load(self, **overrides):
        payload = {"participant_id": 1, "kind": "debit", "amount": "25.00"}
        payload.update(overrides)
        return CreateEntrySchema().load(payload)

    def test_valid(self):
        result = self._load()
        assert result["kind"] is EntryKind.DEBIT
        assert result["amount"] == Decimal("25.00")
        assert isinstance(result["amount"], Decimal)

    def test_number_amount_becomes_decimal(self):
        assert self._load(amount=19.99)["amount"] == Decimal("19.99")

    def test_amount_not_rounded(self):
        # Too many places is reported later with the actual value; never rounded here.
        assert self._load(amount="10.123")["amount"] == Decimal("10.123")

    def test_unknown_kind(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(kind="rebuy")
        assert exc_info.value.messages["kind"] == [ErrorCode.INVALID_ENTRY_KIND]

    @pytest.mark.parametrize("field", ["participant_id", "kind", "amount"])
    def test_required(self, field):
        payload = {"participant_id": 1, "kind": "credit", "amount": "1"}
        del payload[field]
        with pytest.raises(ValidationError) as exc_info:
            CreateEntrySchema().load(payload)
        assert exc_info.value.messages[field] == ["Missing data for required field."]

    def test_non_numeric_amount(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(amount="ten")
        assert "amount" in exc_info.value.messages


# ═══════════════════════════════════════════════════════════════════════════
# PatchEntrySchema
# ═══════════════════════════════════════════════════════════════════════════

class TestPatchEntrySchema:

    def test_partial(self):
        assert PatchEntrySchema().load({"kind": "credit"}) == {"kind": EntryKind.CREDIT}

    def test_empty_body_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            PatchEntrySchema().load({})
        assert "_schema" in exc_info.value.messages

    def test_unknown_kind(self):
        with pytest.raises(ValidationError) as exc_info:
            PatchEntrySchema().load({"kind": "bonus"})
        assert exc_info.value.messages["kind"] == [ErrorCode.INVALID_ENTRY_KIND]


# ═══════════════════════════════════════════════════════════════════════════
# MarkPaidSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestMarkPaidSchema:

    def test_default_cash(self):
        assert MarkPaidSchema().load({}) == {"method": PaymentMethod.CASH}

    @pytest.mark.parametrize("method", ["cash", "paypal", "venmo", "zelle"])
    def test_known_methods(self, method):
        assert MarkPaidSchema().load({"method": method})["method"].value == method

    def test_unknown_method(self):
        with pytest.raises(ValidationError) as exc_info:
            MarkPaidSchema().load({"method": "cheque"})
        assert exc_info.value.messages["method"] == [ErrorCode.INVALID_PAYMENT_METHOD]
