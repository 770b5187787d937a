"""
services/session_service.py — The minimal session/roster state the engine needs.

Richer lifecycle (scheduling, RSVP, cancellation) belongs to the session
management collaborator. This module only:
  - creates an open session (caller becomes host),
  - adds participants while the session is open,
  - closes the session (open → closed, the precondition for settlement),
  - provides the shared lookup and authorization helpers used by the
    ledger, settlement and audit services.

Authorization rules:
  - Read/write a session's ledger and settlement: host or participant.
  - Add participants, close: host only.

Layer rules:
  - No Flask imports. Receives plain ints/dicts and a SQLAlchemy Session.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.enums import AuditOperation, SessionStatus
from backend.app.models.game_session import GameSession
from backend.app.models.participant import Participant
from backend.app.services import audit_service
from backend.app.services.audit_service import AuditTable, ChangeReason

logger = logging.getLogger(__name__)


# ── Shared helpers ─────────────────────────────────────────────────────────

def get_session_or_404(session_id: int, session: Session) -> GameSession:
    """Returns the GameSession or raises SESSION_NOT_FOUND (404)."""
    game_session = session.get(GameSession, session_id)
    if game_session is None:
        raise AppError(
            ErrorCode.SESSION_NOT_FOUND,
            f"Session {session_id} does not exist.",
            404,
        )
    return game_session


def get_participant_ids_for_user(session_id: int, user_id: int, session: Session) -> list[int]:
    stmt = select(Participant.id).where(
        Participant.session_id == session_id,
        Participant.user_id == user_id,
    )
    return list(session.execute(stmt).scalars().all())


def require_session_access(
        game_session: GameSession,
        user_id: int,
        session: Session,
) -> None:
    """Raises FORBIDDEN (403) unless user_id is the host or a participant."""
    if game_session.host_user_id == user_id:
        return
    if not get_participant_ids_for_user(game_session.id, user_id, session):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a participant of session {game_session.id}.",
            403,
        )


def require_host(game_session: GameSession, user_id: int) -> None:
    """Raises FORBIDDEN (403) unless user_id hosts the session."""
    if game_session.host_user_id != user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the host of session {game_session.id} can do this.",
            403,
        )


def get_participants(session_id: int, session: Session) -> list[Participant]:
    """Returns a session's participants in roster order."""
    stmt = (
        select(Participant)
        .where(Participant.session_id == session_id)
        .order_by(Participant.id)
    )
    return list(session.execute(stmt).scalars().all())


# ── Public service functions ───────────────────────────────────────────────

def create_session(caller_id: int, data: dict, session: Session) -> GameSession:
    """Creates an open session hosted by caller_id."""
    game_session = GameSession(
        name=data["name"].strip(),
        host_user_id=caller_id,
        status=SessionStatus.OPEN,
    )
    session.add(game_session)
    session.flush()
    return game_session


def get_session(session_id: int, caller_id: int, session: Session) -> GameSession:
    """
    Returns a session visible to the caller.

    Raises:
        AppError(SESSION_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
    """
    game_session = get_session_or_404(session_id, session)
    require_session_access(game_session, caller_id, session)
    return game_session


def lock_session(session_id: int, caller_id: int, session: Session) -> GameSession:
    """
    get_session() that also holds the session row lock until commit.

    Entry writes take this lock, the same one calculate_settlement() takes
    first, so a write that arrives mid-settlement waits for it and then
    reads the committed settled_at.
    """
    stmt = (
        select(GameSession)
        .where(GameSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    game_session = session.execute(stmt).scalar_one_or_none()
    if game_session is None:
        raise AppError(
            ErrorCode.SESSION_NOT_FOUND,
            f"Session {session_id} does not exist.",
            404,
        )
    require_session_access(game_session, caller_id, session)
    return game_session


def add_participant(
        session_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Participant:
    """
    Adds user_id to the session roster with zero totals.

    Raises:
        AppError(SESSION_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)                 -- caller is not the host.
        AppError(SESSION_ALREADY_CLOSED, 409)    -- roster is fixed once closed.
        AppError(PARTICIPANT_ALREADY_ADDED, 409)
    """
    game_session = get_session_or_404(session_id, session)
    require_host(game_session, caller_id)

    if game_session.is_closed:
        raise AppError(
            ErrorCode.SESSION_ALREADY_CLOSED,
            f"Session {session_id} is closed; its roster can no longer change.",
            409,
        )

    user_id: int = data["user_id"]
    if get_participant_ids_for_user(session_id, user_id, session):
        raise AppError(
            ErrorCode.PARTICIPANT_ALREADY_ADDED,
            f"User {user_id} already takes part in session {session_id}.",
            409,
            field="user_id",
        )

    participant = Participant(
        session_id=session_id,
        user_id=user_id,
        total_credit=Decimal("0.00"),
        total_debit=Decimal("0.00"),
    )
    session.add(participant)
    session.flush()

    audit_service.record(
        session,
        table_name=AuditTable.PARTICIPANTS,
        record_id=participant.id,
        session_id=session_id,
        operation=AuditOperation.INSERT,
        actor_id=caller_id,
        new_amount=Decimal("0.00"),
        change_reason=ChangeReason.PARTICIPANT_JOINED,
    )
    return participant


def close_session(session_id: int, caller_id: int, session: Session) -> GameSession:
    """
    Moves the session from open to closed. Settlement may run afterwards.

    Raises:
        AppError(SESSION_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)              -- caller is not the host.
        AppError(SESSION_ALREADY_CLOSED, 409)
    """
    game_session = get_session_or_404(session_id, session)
    require_host(game_session, caller_id)

    if game_session.is_closed:
        raise AppError(
            ErrorCode.SESSION_ALREADY_CLOSED,
            f"Session {session_id} is already closed.",
            409,
        )

    game_session.status = SessionStatus.CLOSED
    game_session.closed_at = datetime.now(timezone.utc)
    session.flush()

    logger.info("Session %s closed by user %s", session_id, caller_id)
    return game_session
