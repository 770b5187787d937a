"""
services/integrity_service.py — Amount and session-balance validation.

Two checks, both pure functions of already-loaded data:

  validate_amount(amount, minimum, maximum)
      Rejects non-decimal, NaN/infinite, non-2-decimal and out-of-range
      values. Bounds are configuration (ENTRY_AMOUNT_* for entries,
      TRANSFER_AMOUNT_* for computed transfers), passed in by the caller.

  check_balance(participants, tolerance)
      Sums the participants' accumulators and compares total credit against
      total debit. This is the gate settlement_service must pass before the
      debt-netting calculator runs.

All arithmetic is Decimal. Float input is a type mismatch, never coerced.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.services import session_service

TWO_PLACES = Decimal("0.01")
DEFAULT_TOLERANCE = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Rounds to 2 decimal places, half away from zero."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    """Decimal → "12.50". Monetary amounts leave the API as strings."""
    return f"{round_money(value):.2f}"


# ── Amount validation ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class AmountRejection:
    code: str
    message: str


def validate_amount(
        amount,
        minimum: Decimal,
        maximum: Decimal,
) -> AmountRejection | None:
    """
    Returns None when amount is acceptable, else the reason it is not.

    Order of checks: type, finiteness, sign, precision, bounds. Messages
    name the expected bound and the actual value.
    """
    if isinstance(amount, bool) or not isinstance(amount, (Decimal, int)):
        return AmountRejection(
            ErrorCode.INVALID_FIELD,
            f"Amount must be a decimal number, got {type(amount).__name__}.",
        )

    amount = Decimal(amount)

    if not amount.is_finite():
        return AmountRejection(
            ErrorCode.INVALID_FIELD,
            f"Amount must be a finite number, got {amount}.",
        )

    if amount < 0:
        return AmountRejection(
            ErrorCode.AMOUNT_OUT_OF_RANGE,
            f"Amount must not be negative, got {amount}.",
        )

    # Value-based: 10.100 is exactly representable at 2 places, 10.123 is not.
    try:
        at_two_places = amount.quantize(TWO_PLACES)
    except InvalidOperation:
        # More integer digits than the decimal context can carry at 2 places.
        return AmountRejection(
            ErrorCode.AMOUNT_OUT_OF_RANGE,
            f"Amount {amount} exceeds maximum of {format_money(maximum)}.",
        )

    if amount != at_two_places:
        return AmountRejection(
            ErrorCode.INVALID_AMOUNT_PRECISION,
            f"Amount must have at most 2 decimal places, got {amount}.",
        )

    if amount < minimum:
        return AmountRejection(
            ErrorCode.AMOUNT_OUT_OF_RANGE,
            f"Amount {format_money(amount)} is below the minimum of {format_money(minimum)}.",
        )

    if amount > maximum:
        return AmountRejection(
            ErrorCode.AMOUNT_OUT_OF_RANGE,
            f"Amount {format_money(amount)} exceeds maximum of {format_money(maximum)}.",
        )

    return None


def require_valid_amount(
        amount,
        minimum: Decimal,
        maximum: Decimal,
        field: str = "amount",
) -> Decimal:
    """
    Raises AppError (400) if validate_amount() rejects the value.
    Returns the amount rounded to its canonical 2-place form.
    """
    rejection = validate_amount(amount, minimum, maximum)
    if rejection is not None:
        raise AppError(rejection.code, rejection.message, 400, field=field)
    return round_money(Decimal(amount))


# ── Session balance ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BalanceCheck:
    ok: bool
    total_credit: Decimal
    total_debit: Decimal
    tolerance: Decimal

    @property
    def difference(self) -> Decimal:
        """Positive when more was cashed out than bought in."""
        return self.total_credit - self.total_debit

    @property
    def message(self) -> str:
        if self.ok:
            return "Session is balanced."
        return (
            f"Financial mismatch: cash-out {format_money(self.total_credit)} vs "
            f"buy-in {format_money(self.total_debit)}. "
            f"Difference {format_money(self.difference)} exceeds tolerance "
            f"{format_money(self.tolerance)}."
        )

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "total_credit": format_money(self.total_credit),
            "total_debit": format_money(self.total_debit),
            "difference": format_money(self.difference),
            "message": self.message,
        }


def check_balance(
        participants: Iterable,
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> BalanceCheck:
    """
    Compares Σ total_credit with Σ total_debit over the given participants.

    Accepts any objects exposing total_credit / total_debit (ORM rows in
    production, plain stand-ins in unit tests).
    """
    total_credit = Decimal("0.00")
    total_debit = Decimal("0.00")
    for participant in participants:
        total_credit += participant.total_credit
        total_debit += participant.total_debit

    total_credit = round_money(total_credit)
    total_debit = round_money(total_debit)

    return BalanceCheck(
        ok=abs(total_credit - total_debit) <= tolerance,
        total_credit=total_credit,
        total_debit=total_debit,
        tolerance=tolerance,
    )


def validate_session_balance(
        session_id: int,
        caller_id: int,
        session: Session,
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> BalanceCheck:
    """
    Balance check for one session, for callers that want to know before
    asking for a settlement. Reads without locking; settlement_service
    repeats the check under lock.

    Raises:
        AppError(SESSION_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
    """
    game_session = session_service.get_session(session_id, caller_id, session)
    participants = session_service.get_participants(game_session.id, session)
    return check_balance(participants, tolerance)
