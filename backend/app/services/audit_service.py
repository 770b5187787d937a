"""
services/audit_service.py — Append-only audit trail for monetary writes.

Every insert/update/delete of an Entry, a Participant's accumulators or a
Transfer calls record() in the same unit of work as the change itself.
record() flushes immediately: if the audit row cannot be written, the error
surfaces inside the caller's transaction and the whole request rolls back.
A change without its audit row is never committed.

Layer rules:
  - No Flask imports. Receives a SQLAlchemy Session.
  - Never updates or deletes AuditRecord rows.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.audit_record import AuditRecord
from backend.app.models.enums import AuditOperation


class AuditTable:
    """Values stored in AuditRecord.table_name."""
    ENTRIES      = "entries"
    PARTICIPANTS = "participants"
    TRANSFERS    = "transfers"


AUDITED_TABLES = frozenset({
    AuditTable.ENTRIES,
    AuditTable.PARTICIPANTS,
    AuditTable.TRANSFERS,
})


class ChangeReason:
    ENTRY_RECORDED      = "entry_recorded"
    ENTRY_UPDATED       = "entry_updated"
    ENTRY_DELETED       = "entry_deleted"
    PARTICIPANT_JOINED  = "participant_joined"
    TOTALS_RECOMPUTED   = "totals_recomputed"
    SETTLEMENT_COMPUTED = "settlement_computed"
    TRANSFER_PAID       = "transfer_paid"
    TRANSFER_REVERTED   = "transfer_reverted"


def record(
        session: Session,
        *,
        table_name: str,
        record_id: int,
        session_id: int,
        operation: AuditOperation,
        actor_id: int | None,
        old_amount: Decimal | None = None,
        new_amount: Decimal | None = None,
        old_state: str | None = None,
        new_state: str | None = None,
        change_reason: str | None = None,
) -> AuditRecord:
    """
    Appends one AuditRecord and flushes it.

    Raises whatever the database raises; callers must not catch it.
    """
    audit_record = AuditRecord(
        table_name=table_name,
        record_id=record_id,
        session_id=session_id,
        operation=operation,
        actor_id=actor_id,
        old_amount=old_amount,
        new_amount=new_amount,
        old_state=old_state,
        new_state=new_state,
        change_reason=change_reason,
    )
    session.add(audit_record)
    session.flush()
    return audit_record


def get_audit_history(
        table_name: str,
        record_id: int,
        caller_id: int,
        session: Session,
) -> list[AuditRecord]:
    """
    Returns the audit history of one row, oldest first.

    An unknown row simply has no history (empty list); deleted entries keep
    theirs. The caller must be able to see the owning game session.

    Raises:
        AppError(INVALID_AUDIT_TABLE, 400) -- table_name is not audited.
        AppError(FORBIDDEN, 403)           -- caller cannot see the session.
    """
    if table_name not in AUDITED_TABLES:
        raise AppError(
            ErrorCode.INVALID_AUDIT_TABLE,
            f"'{table_name}' is not an audited table. "
            f"Valid values: {', '.join(sorted(AUDITED_TABLES))}.",
            400,
            field="table",
        )

    stmt = (
        select(AuditRecord)
        .where(
            AuditRecord.table_name == table_name,
            AuditRecord.record_id == record_id,
        )
        .order_by(AuditRecord.id)
    )
    history = list(session.execute(stmt).scalars().all())
    if not history:
        return history

    from backend.app.services.session_service import (  # local import to avoid circular dep
        get_session_or_404,
        require_session_access,
    )
    game_session = get_session_or_404(history[0].session_id, session)
    require_session_access(game_session, caller_id, session)

    return history
