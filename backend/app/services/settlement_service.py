"""
services/settlement_service.py — Settlement computation and pay-state changes.

calculate_settlement() is the only place that needs cross-request
coordination. It runs as one unit of work (the route commits or rolls back):

  1. Lock the session row (SELECT ... FOR UPDATE). Concurrent settlers of
     the same session queue here; other sessions are unaffected.
  2. Session must be closed (SESSION_NOT_CLOSED, 409).
  3. If the settlement was already computed, return the stored transfers
     unchanged. Retrying after a timeout is therefore safe.
  4. Lock every participant row, re-check the balance under lock
     (BALANCE_MISMATCH, 422), run the netting calculator, insert the
     transfers, stamp session.settled_at.
  5. Any error propagates; the route rolls the whole unit back, so no
     transfer is ever partially written.

Lock waits are bounded by SETTLEMENT_LOCK_TIMEOUT_MS on PostgreSQL; a wait
that runs out surfaces as SETTLEMENT_LOCK_TIMEOUT (503), which callers may
retry. SQLite has no row locks and ignores FOR UPDATE.

Transfers are never deleted. pending → paid and paid → pending are the only
mutations, each audited.

Layer rules:
  - No Flask imports. Limits come in as arguments.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.enums import AuditOperation, PaymentMethod, PayState, RunStatus
from backend.app.models.game_session import GameSession
from backend.app.models.participant import Participant
from backend.app.models.settlement_run import SettlementRun
from backend.app.models.transfer import Transfer
from backend.app.services import audit_service, session_service
from backend.app.services.audit_service import AuditTable, ChangeReason
from backend.app.services.integrity_service import (
    DEFAULT_TOLERANCE,
    check_balance,
    format_money,
    validate_amount,
)
from backend.app.services.ledger_service import get_net_positions
from backend.app.services.netting_service import net_transfers

logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_MIN = Decimal("0.01")
DEFAULT_TRANSFER_MAX = Decimal("5000.00")
DEFAULT_LOCK_TIMEOUT_MS = 5000

# SQLSTATE 55P03 lock_not_available, raised when lock_timeout expires.
_LOCK_NOT_AVAILABLE = "55P03"

_UNLOGGED_FAILURES = frozenset({
    ErrorCode.SESSION_NOT_FOUND,
    ErrorCode.FORBIDDEN,
    ErrorCode.SETTLEMENT_LOCK_TIMEOUT,
})


# ── Locking helpers ────────────────────────────────────────────────────────

def _is_lock_timeout(error: OperationalError) -> bool:
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code == _LOCK_NOT_AVAILABLE


def _set_lock_timeout(session: Session, lock_timeout_ms: int) -> None:
    """Bounds row-lock waits for the rest of the transaction (PostgreSQL only)."""
    if session.get_bind().dialect.name != "postgresql":
        return
    # SET does not accept bind parameters; the value is forced to int.
    session.execute(text(f"SET LOCAL lock_timeout = '{int(lock_timeout_ms)}ms'"))


def _run_locked(session: Session, stmt, session_id: int):
    """Executes a FOR UPDATE statement, mapping an expired wait to a 503."""
    try:
        return session.execute(stmt)
    except OperationalError as exc:
        if not _is_lock_timeout(exc):
            raise
        logger.warning("Lock wait timed out while settling session %s", session_id)
        raise AppError(
            ErrorCode.SETTLEMENT_LOCK_TIMEOUT,
            f"Session {session_id} is being settled by another request. Retry shortly.",
            503,
        ) from exc


def _lock_session(session_id: int, session: Session) -> GameSession:
    stmt = (
        select(GameSession)
        .where(GameSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    game_session = _run_locked(session, stmt, session_id).scalar_one_or_none()
    if game_session is None:
        raise AppError(
            ErrorCode.SESSION_NOT_FOUND,
            f"Session {session_id} does not exist.",
            404,
        )
    return game_session


def _lock_participants(session_id: int, session: Session) -> list[Participant]:
    stmt = (
        select(Participant)
        .where(Participant.session_id == session_id)
        .order_by(Participant.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(_run_locked(session, stmt, session_id).scalars().all())


# ── Private helpers ────────────────────────────────────────────────────────

def _get_transfer_or_404(transfer_id: int, session: Session, lock: bool = False) -> Transfer:
    """Returns the Transfer or raises TRANSFER_NOT_FOUND (404)."""
    stmt = select(Transfer).where(Transfer.id == transfer_id)
    if lock:
        stmt = stmt.with_for_update()
    transfer = session.execute(stmt).scalar_one_or_none()
    if transfer is None:
        raise AppError(
            ErrorCode.TRANSFER_NOT_FOUND,
            f"Transfer {transfer_id} does not exist.",
            404,
        )
    return transfer


def get_transfers(session_id: int, session: Session) -> list[Transfer]:
    """Stored transfers in calculator order."""
    stmt = (
        select(Transfer)
        .where(Transfer.session_id == session_id)
        .order_by(Transfer.id)
    )
    return list(session.execute(stmt).scalars().all())


def _log_run(
        session: Session,
        session_id: int,
        caller_id: int | None,
        status: RunStatus,
        transfers_created: int = 0,
        total_credit: Decimal | None = None,
        total_debit: Decimal | None = None,
        error: AppError | None = None,
) -> SettlementRun:
    run = SettlementRun(
        session_id=session_id,
        attempted_by=caller_id,
        status=status,
        transfers_created=transfers_created,
        total_credit=total_credit,
        total_debit=total_debit,
        error_code=error.code if error is not None else None,
        error_message=error.message if error is not None else None,
    )
    session.add(run)
    session.flush()
    return run


def _plan_transfers(
        participants: list[Participant],
        tolerance: Decimal,
        transfer_min: Decimal,
        transfer_max: Decimal,
) -> list[dict]:
    """Runs the calculator and checks every amount against the transfer bounds."""
    planned = net_transfers(get_net_positions(participants), tolerance)
    for item in planned:
        rejection = validate_amount(item["amount"], transfer_min, transfer_max)
        if rejection is not None:
            raise AppError(
                ErrorCode.TRANSFER_AMOUNT_OUT_OF_RANGE,
                f"Computed transfer from participant {item['payer_id']} to participant "
                f"{item['payee_id']} is invalid: {rejection.message}",
                422,
            )
    return planned


# ── Public service functions ───────────────────────────────────────────────

def calculate_settlement(
        session_id: int,
        caller_id: int,
        session: Session,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        transfer_min: Decimal = DEFAULT_TRANSFER_MIN,
        transfer_max: Decimal = DEFAULT_TRANSFER_MAX,
        lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
) -> tuple[list[Transfer], bool]:
    """
    Computes the session's transfers once; later calls return the same rows.

    Returns:
        (transfers, created) — created is False when the stored settlement
        was returned unchanged.

    Raises:
        AppError(SESSION_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
        AppError(SESSION_NOT_CLOSED, 409)
        AppError(BALANCE_MISMATCH, 422)
        AppError(TRANSFER_AMOUNT_OUT_OF_RANGE, 422)
        AppError(SETTLEMENT_LOCK_TIMEOUT, 503)
    """
    _set_lock_timeout(session, lock_timeout_ms)

    # Step 1: serialise settlers of this session.
    game_session = _lock_session(session_id, session)
    session_service.require_session_access(game_session, caller_id, session)

    # Step 2: only closed sessions settle.
    if not game_session.is_closed:
        raise AppError(
            ErrorCode.SESSION_NOT_CLOSED,
            f"Session {session_id} is {game_session.status.value}; "
            f"only closed sessions can be settled.",
            409,
        )

    # Step 3: idempotent short-circuit.
    if game_session.is_settled:
        transfers = get_transfers(session_id, session)
        _log_run(session, session_id, caller_id, RunStatus.REUSED)
        logger.info(
            "Settlement for session %s already computed; returning %d transfers",
            session_id, len(transfers),
        )
        return transfers, False

    # Step 4: freeze balances, re-validate, compute, persist.
    participants = _lock_participants(session_id, session)

    balance = check_balance(participants, tolerance)
    if not balance.ok:
        logger.warning("Settlement refused for session %s: %s", session_id, balance.message)
        raise AppError(ErrorCode.BALANCE_MISMATCH, balance.message, 422)

    planned = _plan_transfers(participants, tolerance, transfer_min, transfer_max)

    transfers: list[Transfer] = []
    for item in planned:
        transfer = Transfer(
            session_id=session_id,
            payer_id=item["payer_id"],
            payee_id=item["payee_id"],
            amount=item["amount"],
            pay_state=PayState.PENDING,
        )
        session.add(transfer)
        session.flush()  # one at a time: ids follow calculator order
        transfers.append(transfer)

        audit_service.record(
            session,
            table_name=AuditTable.TRANSFERS,
            record_id=transfer.id,
            session_id=session_id,
            operation=AuditOperation.INSERT,
            actor_id=caller_id,
            new_amount=transfer.amount,
            new_state=PayState.PENDING.value,
            change_reason=ChangeReason.SETTLEMENT_COMPUTED,
        )

    game_session.settled_at = datetime.now(timezone.utc)
    _log_run(
        session, session_id, caller_id, RunStatus.COMPUTED,
        transfers_created=len(transfers),
        total_credit=balance.total_credit,
        total_debit=balance.total_debit,
    )

    logger.info(
        "Settlement computed for session %s: %d transfers, %s moved",
        session_id, len(transfers),
        format_money(sum((t.amount for t in transfers), Decimal("0.00"))),
    )
    return transfers, True


def record_failed_attempt(
        session_id: int,
        caller_id: int,
        error: AppError,
        session: Session,
) -> None:
    """
    Logs a rejected calculate_settlement() call.

    Must run in a fresh unit of work, after the failed one was rolled back.
    Nothing is logged for unknown sessions, for callers without access, or
    for lock timeouts (the log row's foreign key would wait on the same lock).
    """
    if error.code in _UNLOGGED_FAILURES:
        return
    if session.get(GameSession, session_id) is None:
        return
    _log_run(session, session_id, caller_id, RunStatus.FAILED, error=error)


def get_settlement(
        session_id: int,
        caller_id: int,
        session: Session,
) -> tuple[GameSession, list[Transfer]]:
    """
    Returns the session and its stored transfers.

    The transfer list is empty when the settlement has not been computed;
    callers distinguish that case with game_session.is_settled.
    """
    game_session = session_service.get_session(session_id, caller_id, session)
    if not game_session.is_settled:
        return game_session, []
    return game_session, get_transfers(session_id, session)


def list_runs(session_id: int, caller_id: int, session: Session) -> list[SettlementRun]:
    """Calculation attempts for a session, oldest first."""
    session_service.get_session(session_id, caller_id, session)
    stmt = (
        select(SettlementRun)
        .where(SettlementRun.session_id == session_id)
        .order_by(SettlementRun.id)
    )
    return list(session.execute(stmt).scalars().all())


def mark_transfer_paid(
        transfer_id: int,
        caller_id: int,
        method: PaymentMethod,
        session: Session,
) -> Transfer:
    """
    pending → paid, tagged with the payment method.

    Payer, payee or host may confirm a payment.

    Raises:
        AppError(TRANSFER_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
        AppError(TRANSFER_ALREADY_PAID, 409)
    """
    transfer = _get_transfer_or_404(transfer_id, session, lock=True)
    game_session = session_service.get_session_or_404(transfer.session_id, session)

    allowed = {transfer.payer.user_id, transfer.payee.user_id, game_session.host_user_id}
    if caller_id not in allowed:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the payer, the payee or the host can confirm this transfer.",
            403,
        )

    if transfer.is_paid:
        raise AppError(
            ErrorCode.TRANSFER_ALREADY_PAID,
            f"Transfer {transfer_id} is already marked as paid.",
            409,
        )

    transfer.pay_state = PayState.PAID
    transfer.payment_method = PaymentMethod(method)
    transfer.paid_at = datetime.now(timezone.utc)
    session.flush()

    audit_service.record(
        session,
        table_name=AuditTable.TRANSFERS,
        record_id=transfer.id,
        session_id=transfer.session_id,
        operation=AuditOperation.UPDATE,
        actor_id=caller_id,
        old_amount=transfer.amount,
        new_amount=transfer.amount,
        old_state=PayState.PENDING.value,
        new_state=PayState.PAID.value,
        change_reason=ChangeReason.TRANSFER_PAID,
    )

    logger.info(
        "Transfer %s marked paid via %s by user %s",
        transfer_id, transfer.payment_method.value, caller_id,
    )
    return transfer


def revert_transfer(transfer_id: int, caller_id: int, session: Session) -> Transfer:
    """
    paid → pending. A compensating transition; the row and its id stay.

    Only the payee (who confirmed receipt) or the host may retract.

    Raises:
        AppError(TRANSFER_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
        AppError(TRANSFER_NOT_PAID, 409)
    """
    transfer = _get_transfer_or_404(transfer_id, session, lock=True)
    game_session = session_service.get_session_or_404(transfer.session_id, session)

    if caller_id not in (transfer.payee.user_id, game_session.host_user_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the payee or the host can revert this transfer.",
            403,
        )

    if not transfer.is_paid:
        raise AppError(
            ErrorCode.TRANSFER_NOT_PAID,
            f"Transfer {transfer_id} is not marked as paid.",
            409,
        )

    transfer.pay_state = PayState.PENDING
    transfer.payment_method = None
    transfer.paid_at = None
    session.flush()

    audit_service.record(
        session,
        table_name=AuditTable.TRANSFERS,
        record_id=transfer.id,
        session_id=transfer.session_id,
        operation=AuditOperation.UPDATE,
        actor_id=caller_id,
        old_amount=transfer.amount,
        new_amount=transfer.amount,
        old_state=PayState.PAID.value,
        new_state=PayState.PENDING.value,
        change_reason=ChangeReason.TRANSFER_REVERTED,
    )

    logger.info("Transfer %s reverted to pending by user %s", transfer_id, caller_id)
    return transfer
