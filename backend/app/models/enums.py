"""
models/enums.py — Enumerations shared by models, schemas and services.

Defined once here so they can be imported without pulling in a full model.
Do not duplicate these as plain string constants anywhere else.

All enums are stored as their string values (native_enum=False) so the same
models work on PostgreSQL and on the SQLite database used by the test suite.
"""

from __future__ import annotations

import enum

from sqlalchemy import Enum


class SessionStatus(str, enum.Enum):
    """Only the states the settlement engine depends on."""
    OPEN   = "open"
    CLOSED = "closed"


class EntryKind(str, enum.Enum):
    """debit = buy-in, credit = cash-out."""
    DEBIT  = "debit"
    CREDIT = "credit"


class PayState(str, enum.Enum):
    PENDING = "pending"
    PAID    = "paid"


class PaymentMethod(str, enum.Enum):
    CASH   = "cash"
    PAYPAL = "paypal"
    VENMO  = "venmo"
    ZELLE  = "zelle"


class AuditOperation(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class RunStatus(str, enum.Enum):
    """Outcome of one calculate-settlement call."""
    COMPUTED = "computed"
    REUSED   = "reused"
    FAILED   = "failed"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'paid'), not names ('PAID')."""
    return [member.value for member in enum_cls]


def value_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Column type storing `enum_cls` members as VARCHAR values."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=enum_values,
        validate_strings=True,
    )
