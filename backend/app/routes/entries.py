"""
routes/entries.py — Ledger entry route handlers.

Registered at url_prefix=/api/v1 because this blueprint owns both the
session-scoped paths (/sessions/:id/entries) and the entry-ID paths
(/entries/:id).

Every write returns the entry together with the participant totals it
produced, so callers never need a second read to see the new net position.

Endpoints:
  POST   /sessions/:id/entries   → 201  record a buy-in or cash-out
  GET    /sessions/:id/entries   → 200  list entries, oldest first
  PATCH  /entries/:id            → 200  partial update
  DELETE /entries/:id            → 200  hard delete (audit history remains)
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.entry import Entry
from backend.app.routes.sessions import serialize_participant
from backend.app.schemas.entry_schema import CreateEntrySchema, PatchEntrySchema
from backend.app.services import ledger_service
from backend.app.services.integrity_service import format_money

entries_bp = Blueprint("entries", __name__)


def _serialize_entry(entry: Entry) -> dict:
    return {
        "id": entry.id,
        "session_id": entry.session_id,
        "participant_id": entry.participant_id,
        "kind": entry.kind.value,
        "amount": format_money(entry.amount),
        "recorded_by_user_id": entry.recorded_by_user_id,
        "created_at": entry.created_at.isoformat(),
        "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
    }


def _entry_limits() -> dict:
    return {
        "min_amount": current_app.config["ENTRY_AMOUNT_MIN"],
        "max_amount": current_app.config["ENTRY_AMOUNT_MAX"],
    }


# ── Session-scoped entry routes ────────────────────────────────────────────

@entries_bp.route("/sessions/<int:session_id>/entries", methods=["POST"])
@require_auth
def record_entry(session_id: int):
    """POST /sessions/:id/entries — Record one buy-in (debit) or cash-out (credit)."""
    data = CreateEntrySchema().load(request.get_json(force=True) or {})
    entry = ledger_service.record_entry(
        session_id=session_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        **_entry_limits(),
    )
    db.session.commit()
    return jsonify({
        "data": {
            "entry": _serialize_entry(entry),
            "participant": serialize_participant(entry.participant),
        },
        "warnings": [],
    }), 201


@entries_bp.route("/sessions/<int:session_id>/entries", methods=["GET"])
@require_auth
def list_entries(session_id: int):
    """GET /sessions/:id/entries — All entries of a session, oldest first."""
    entries = ledger_service.list_entries(
        session_id=session_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_entry(e) for e in entries],
        "warnings": [],
    }), 200


# ── Entry-ID routes ────────────────────────────────────────────────────────

@entries_bp.route("/entries/<int:entry_id>", methods=["PATCH"])
@require_auth
def edit_entry(entry_id: int):
    """
    PATCH /entries/:id — Change amount, kind or participant.
    Frozen once the session's settlement exists (409).
    """
    data = PatchEntrySchema().load(request.get_json(force=True) or {})
    entry = ledger_service.edit_entry(
        entry_id=entry_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        **_entry_limits(),
    )
    db.session.commit()
    return jsonify({
        "data": {
            "entry": _serialize_entry(entry),
            "participant": serialize_participant(entry.participant),
        },
        "warnings": [],
    }), 200


@entries_bp.route("/entries/<int:entry_id>", methods=["DELETE"])
@require_auth
def delete_entry(entry_id: int):
    """DELETE /entries/:id — Remove an entry; its participant's totals follow."""
    ledger_service.delete_entry(
        entry_id=entry_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "entry_id": entry_id,
        },
        "warnings": [],
    }), 200
