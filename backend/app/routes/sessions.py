"""
routes/sessions.py — Session, roster and ledger-read route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - _serialize_* helpers are pure data-shape helpers.

Endpoints (base url_prefix=/api/v1/sessions):
  POST   /sessions                       → 201  create an open session
  GET    /sessions/:id                   → 200  session + participants
  POST   /sessions/:id/participants      → 201  add a participant (host only)
  POST   /sessions/:id/close             → 200  open → closed (host only)
  GET    /sessions/:id/ledger            → 200  per-participant totals
  GET    /sessions/:id/balance-check     → 200  credit/debit balance check
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.game_session import GameSession
from backend.app.models.participant import Participant
from backend.app.schemas.session_schema import AddParticipantSchema, CreateSessionSchema
from backend.app.services import integrity_service, ledger_service, session_service
from backend.app.services.integrity_service import format_money

sessions_bp = Blueprint("sessions", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────

def _iso(value) -> str | None:
    return value.isoformat() if value else None


def serialize_participant(p: Participant) -> dict:
    return {
        "id": p.id,
        "session_id": p.session_id,
        "user_id": p.user_id,
        "total_credit": format_money(p.total_credit),
        "total_debit": format_money(p.total_debit),
        "net_position": format_money(p.net_position),
        "joined_at": _iso(p.joined_at),
    }


def _serialize_session(s: GameSession, participants: list[Participant]) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "host_user_id": s.host_user_id,
        "status": s.status.value,
        "created_at": _iso(s.created_at),
        "closed_at": _iso(s.closed_at),
        "settled_at": _iso(s.settled_at),
        "participants": [serialize_participant(p) for p in participants],
    }


# ── Session routes ─────────────────────────────────────────────────────────

@sessions_bp.route("", methods=["POST"])
@require_auth
def create_session():
    """POST /sessions — Create an open session; the caller becomes host."""
    data = CreateSessionSchema().load(request.get_json(force=True) or {})
    game_session = session_service.create_session(
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_session(game_session, []), "warnings": []}), 201


@sessions_bp.route("/<int:session_id>", methods=["GET"])
@require_auth
def get_session(session_id: int):
    """GET /sessions/:id — Session detail. Host or participants only."""
    game_session = session_service.get_session(
        session_id=session_id,
        caller_id=g.user_id,
        session=db.session,
    )
    participants = session_service.get_participants(session_id, db.session)
    return jsonify({
        "data": _serialize_session(game_session, participants),
        "warnings": [],
    }), 200


@sessions_bp.route("/<int:session_id>/participants", methods=["POST"])
@require_auth
def add_participant(session_id: int):
    """POST /sessions/:id/participants — Add a user to an open session."""
    data = AddParticipantSchema().load(request.get_json(force=True) or {})
    participant = session_service.add_participant(
        session_id=session_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_participant(participant), "warnings": []}), 201


@sessions_bp.route("/<int:session_id>/close", methods=["POST"])
@require_auth
def close_session(session_id: int):
    """
    POST /sessions/:id/close — open → closed.
    Does not compute the settlement; that is POST /sessions/:id/settlement.
    """
    game_session = session_service.close_session(
        session_id=session_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    participants = session_service.get_participants(session_id, db.session)
    return jsonify({
        "data": _serialize_session(game_session, participants),
        "warnings": [],
    }), 200


# ── Ledger reads ───────────────────────────────────────────────────────────

@sessions_bp.route("/<int:session_id>/ledger", methods=["GET"])
@require_auth
def get_ledger(session_id: int):
    """GET /sessions/:id/ledger — Every participant's credit, debit and net position."""
    participants = ledger_service.get_ledger(
        session_id=session_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_participant(p) for p in participants],
        "warnings": [],
    }), 200


@sessions_bp.route("/<int:session_id>/balance-check", methods=["GET"])
@require_auth
def balance_check(session_id: int):
    """
    GET /sessions/:id/balance-check

    Always 200: a mismatch is reported in the body (ok=false), not raised.
    POST /sessions/:id/settlement is what refuses to run on a mismatch.
    """
    result = integrity_service.validate_session_balance(
        session_id=session_id,
        caller_id=g.user_id,
        session=db.session,
        tolerance=current_app.config["BALANCE_TOLERANCE"],
    )
    return jsonify({"data": result.to_dict(), "warnings": []}), 200
