"""
services/ledger_service.py — Entry recording and participant totals.

This file is the SINGLE SOURCE OF TRUTH for how a participant's
total_credit / total_debit are derived from Entry rows:

    total_credit = round(Σ amount of credit entries, 2)   # cash-outs
    total_debit  = round(Σ amount of debit entries, 2)    # buy-ins
    net_position = total_credit - total_debit

Every entry write (insert, update, delete) calls
recompute_participant_totals() before returning, in the same flush, for the
affected participant and, on a reassignment, for the previous one too.
Entry and totals are therefore committed together or not at all.

Entries are frozen once the session's settlement has been computed
(SETTLEMENT_ALREADY_COMPUTED, 409). Every write first locks the session
row, so it cannot interleave with a running calculate_settlement().

Layer rules:
  - No Flask imports. Limits come in as arguments.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.entry import Entry
from backend.app.models.enums import AuditOperation, EntryKind
from backend.app.models.game_session import GameSession
from backend.app.models.participant import Participant
from backend.app.services import audit_service, session_service
from backend.app.services.audit_service import AuditTable, ChangeReason
from backend.app.services.integrity_service import require_valid_amount, round_money

DEFAULT_ENTRY_MIN = Decimal("0.01")
DEFAULT_ENTRY_MAX = Decimal("10000.00")


# ── Private helpers ────────────────────────────────────────────────────────

def _get_entry_or_404(entry_id: int, session: Session) -> Entry:
    """Returns the Entry or raises ENTRY_NOT_FOUND (404)."""
    entry = session.get(Entry, entry_id)
    if entry is None:
        raise AppError(
            ErrorCode.ENTRY_NOT_FOUND,
            f"Entry {entry_id} does not exist.",
            404,
        )
    return entry


def _get_participant_in_session(
        participant_id: int,
        session_id: int,
        session: Session,
) -> Participant:
    """Returns the participant if it belongs to session_id, else PARTICIPANT_NOT_FOUND (404)."""
    participant = session.get(Participant, participant_id)
    if participant is None or participant.session_id != session_id:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_FOUND,
            f"Participant {participant_id} is not part of session {session_id}.",
            404,
            field="participant_id",
        )
    return participant


def _require_entries_open(game_session: GameSession) -> None:
    """Entries are frozen once the settlement exists."""
    if game_session.is_settled:
        raise AppError(
            ErrorCode.SETTLEMENT_ALREADY_COMPUTED,
            f"Settlement for session {game_session.id} has already been computed; "
            f"its entries can no longer change.",
            409,
        )


def _require_entry_editor(entry: Entry, game_session: GameSession, caller_id: int) -> None:
    """Only whoever recorded the entry, or the host, may change it."""
    if caller_id not in (entry.recorded_by_user_id, game_session.host_user_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the host or the user who recorded this entry can change it.",
            403,
        )


# ── Ledger aggregation ─────────────────────────────────────────────────────

def compute_totals(entries) -> tuple[Decimal, Decimal]:
    """Returns (total_credit, total_debit) for the given entries."""
    total_credit = Decimal("0.00")
    total_debit = Decimal("0.00")
    for entry in entries:
        if entry.kind == EntryKind.CREDIT:
            total_credit += entry.amount
        else:
            total_debit += entry.amount
    return round_money(total_credit), round_money(total_debit)


def recompute_participant_totals(
        participant: Participant,
        actor_id: int | None,
        session: Session,
) -> Participant:
    """
    Re-derives the participant's accumulators from its Entry rows.

    Pending entry changes are flushed first so the query sees them.
    A change in totals is audited with the old and new net position.
    """
    session.flush()
    stmt = select(Entry).where(Entry.participant_id == participant.id)
    total_credit, total_debit = compute_totals(session.execute(stmt).scalars().all())

    if (total_credit, total_debit) == (participant.total_credit, participant.total_debit):
        return participant

    old_net = participant.net_position
    participant.total_credit = total_credit
    participant.total_debit = total_debit
    session.flush()

    audit_service.record(
        session,
        table_name=AuditTable.PARTICIPANTS,
        record_id=participant.id,
        session_id=participant.session_id,
        operation=AuditOperation.UPDATE,
        actor_id=actor_id,
        old_amount=old_net,
        new_amount=participant.net_position,
        change_reason=ChangeReason.TOTALS_RECOMPUTED,
    )
    return participant


def get_net_positions(participants) -> dict[int, Decimal]:
    """{participant_id: net_position} for participants whose position is not zero."""
    return {
        p.id: p.net_position
        for p in participants
        if p.net_position != Decimal("0")
    }


# ── Public service functions ───────────────────────────────────────────────

def record_entry(
        session_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        min_amount: Decimal = DEFAULT_ENTRY_MIN,
        max_amount: Decimal = DEFAULT_ENTRY_MAX,
) -> Entry:
    """
    Records one buy-in (debit) or cash-out (credit).

    Args:
        data: Validated dict from CreateEntrySchema.
              Keys: participant_id (int), kind (EntryKind), amount (Decimal).

    Raises:
        AppError(SESSION_NOT_FOUND, 404) / AppError(PARTICIPANT_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)                    -- caller cannot see the session.
        AppError(SETTLEMENT_ALREADY_COMPUTED, 409)  -- entries are frozen.
        AppError(AMOUNT_OUT_OF_RANGE / INVALID_AMOUNT_PRECISION, 400)
    """
    game_session = session_service.lock_session(session_id, caller_id, session)
    _require_entries_open(game_session)

    participant = _get_participant_in_session(data["participant_id"], session_id, session)
    amount = require_valid_amount(data["amount"], min_amount, max_amount)
    kind = EntryKind(data["kind"])

    entry = Entry(
        session_id=session_id,
        participant_id=participant.id,
        kind=kind,
        amount=amount,
        recorded_by_user_id=caller_id,
    )
    session.add(entry)
    session.flush()

    audit_service.record(
        session,
        table_name=AuditTable.ENTRIES,
        record_id=entry.id,
        session_id=session_id,
        operation=AuditOperation.INSERT,
        actor_id=caller_id,
        new_amount=amount,
        new_state=kind.value,
        change_reason=ChangeReason.ENTRY_RECORDED,
    )

    recompute_participant_totals(participant, caller_id, session)
    return entry


def edit_entry(
        entry_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        min_amount: Decimal = DEFAULT_ENTRY_MIN,
        max_amount: Decimal = DEFAULT_ENTRY_MAX,
) -> Entry:
    """
    Partially updates an entry's amount, kind or participant.

    Moving an entry to another participant recomputes both participants.

    Raises:
        AppError(ENTRY_NOT_FOUND, 404) / AppError(PARTICIPANT_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
        AppError(SETTLEMENT_ALREADY_COMPUTED, 409)
        AppError(AMOUNT_OUT_OF_RANGE / INVALID_AMOUNT_PRECISION, 400)
    """
    entry = _get_entry_or_404(entry_id, session)
    game_session = session_service.lock_session(entry.session_id, caller_id, session)
    _require_entry_editor(entry, game_session, caller_id)
    _require_entries_open(game_session)

    old_amount = entry.amount
    old_kind = entry.kind
    previous_participant = entry.participant

    if "participant_id" in data:
        entry.participant = _get_participant_in_session(
            data["participant_id"], entry.session_id, session,
        )
    if "amount" in data:
        entry.amount = require_valid_amount(data["amount"], min_amount, max_amount)
    if "kind" in data:
        entry.kind = EntryKind(data["kind"])

    entry.updated_at = datetime.now(timezone.utc)
    session.flush()

    audit_service.record(
        session,
        table_name=AuditTable.ENTRIES,
        record_id=entry.id,
        session_id=entry.session_id,
        operation=AuditOperation.UPDATE,
        actor_id=caller_id,
        old_amount=old_amount,
        new_amount=entry.amount,
        old_state=old_kind.value,
        new_state=entry.kind.value,
        change_reason=ChangeReason.ENTRY_UPDATED,
    )

    recompute_participant_totals(entry.participant, caller_id, session)
    if previous_participant.id != entry.participant_id:
        recompute_participant_totals(previous_participant, caller_id, session)

    return entry


def delete_entry(entry_id: int, caller_id: int, session: Session) -> None:
    """
    Removes an entry and recomputes its participant's totals.
    The entry's audit history outlives the row.

    Raises:
        AppError(ENTRY_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
        AppError(SETTLEMENT_ALREADY_COMPUTED, 409)
    """
    entry = _get_entry_or_404(entry_id, session)
    game_session = session_service.lock_session(entry.session_id, caller_id, session)
    _require_entry_editor(entry, game_session, caller_id)
    _require_entries_open(game_session)

    participant = entry.participant

    audit_service.record(
        session,
        table_name=AuditTable.ENTRIES,
        record_id=entry.id,
        session_id=entry.session_id,
        operation=AuditOperation.DELETE,
        actor_id=caller_id,
        old_amount=entry.amount,
        old_state=entry.kind.value,
        change_reason=ChangeReason.ENTRY_DELETED,
    )

    session.delete(entry)
    recompute_participant_totals(participant, caller_id, session)


def list_entries(session_id: int, caller_id: int, session: Session) -> list[Entry]:
    """Returns a session's entries, oldest first."""
    session_service.get_session(session_id, caller_id, session)
    stmt = (
        select(Entry)
        .where(Entry.session_id == session_id)
        .order_by(Entry.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_ledger(session_id: int, caller_id: int, session: Session) -> list[Participant]:
    """Returns the session's participants with their current totals."""
    session_service.get_session(session_id, caller_id, session)
    return session_service.get_participants(session_id, session)
