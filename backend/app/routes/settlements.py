"""
routes/settlements.py — Settlement engine route handlers.

Registered at url_prefix=/api/v1: the blueprint owns both session-scoped
paths (/sessions/:id/settlement) and transfer-ID paths (/transfers/:id/...).

Special: calculate_settlement is the one route that catches AppError.
  The failed unit of work is rolled back first (no transfer survives a
  failure), then the attempt is logged to settlement_runs in a second,
  committed unit of work, then the error is re-raised for the global handler.

Endpoints:
  POST /sessions/:id/settlement           → 201 computed / 200 already computed
  GET  /sessions/:id/settlement           → 200  {computed, all_paid, transfers}
  GET  /sessions/:id/settlement/attempts  → 200  calculation log
  POST /transfers/:id/pay                 → 200  pending → paid
  POST /transfers/:id/revert              → 200  paid → pending
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.errors import AppError
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.settlement_run import SettlementRun
from backend.app.models.transfer import Transfer
from backend.app.schemas.transfer_schema import MarkPaidSchema
from backend.app.services import settlement_service
from backend.app.services.integrity_service import format_money

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────

def _serialize_transfer(t: Transfer) -> dict:
    return {
        "id": t.id,
        "session_id": t.session_id,
        "payer_id": t.payer_id,
        "payer_user_id": t.payer.user_id,
        "payee_id": t.payee_id,
        "payee_user_id": t.payee.user_id,
        "amount": format_money(t.amount),
        "pay_state": t.pay_state.value,
        "payment_method": t.payment_method.value if t.payment_method else None,
        "created_at": t.created_at.isoformat(),
        "paid_at": t.paid_at.isoformat() if t.paid_at else None,
    }


def _serialize_run(run: SettlementRun) -> dict:
    return {
        "id": run.id,
        "session_id": run.session_id,
        "attempted_by": run.attempted_by,
        "status": run.status.value,
        "error_code": run.error_code,
        "error_message": run.error_message,
        "total_credit": format_money(run.total_credit) if run.total_credit is not None else None,
        "total_debit": format_money(run.total_debit) if run.total_debit is not None else None,
        "transfers_created": run.transfers_created,
        "created_at": run.created_at.isoformat(),
    }


# ── Session-scoped settlement routes ───────────────────────────────────────

@settlements_bp.route("/sessions/<int:session_id>/settlement", methods=["POST"])
@require_auth
def calculate_settlement(session_id: int):
    """
    POST /sessions/:id/settlement — Compute the transfers, at most once.

    Safe to retry: once computed, the same transfers come back with 200.
    """
    config = current_app.config
    try:
        transfers, created = settlement_service.calculate_settlement(
            session_id=session_id,
            caller_id=g.user_id,
            session=db.session,
            tolerance=config["BALANCE_TOLERANCE"],
            transfer_min=config["TRANSFER_AMOUNT_MIN"],
            transfer_max=config["TRANSFER_AMOUNT_MAX"],
            lock_timeout_ms=config["SETTLEMENT_LOCK_TIMEOUT_MS"],
        )
    except AppError as error:
        db.session.rollback()
        settlement_service.record_failed_attempt(
            session_id=session_id,
            caller_id=g.user_id,
            error=error,
            session=db.session,
        )
        db.session.commit()
        raise

    db.session.commit()
    return jsonify({
        "data": [_serialize_transfer(t) for t in transfers],
        "warnings": [],
    }), 201 if created else 200


@settlements_bp.route("/sessions/<int:session_id>/settlement", methods=["GET"])
@require_auth
def get_settlement(session_id: int):
    """
    GET /sessions/:id/settlement

    computed=false with an empty list when the settlement has not run yet.
    """
    game_session, transfers = settlement_service.get_settlement(
        session_id=session_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": {
            "session_id": session_id,
            "computed": game_session.is_settled,
            "all_paid": game_session.is_settled and all(t.is_paid for t in transfers),
            "transfers": [_serialize_transfer(t) for t in transfers],
        },
        "warnings": [],
    }), 200


@settlements_bp.route("/sessions/<int:session_id>/settlement/attempts", methods=["GET"])
@require_auth
def list_attempts(session_id: int):
    """GET /sessions/:id/settlement/attempts — Every calculation call, oldest first."""
    runs = settlement_service.list_runs(
        session_id=session_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": [_serialize_run(r) for r in runs], "warnings": []}), 200


# ── Transfer-ID routes ─────────────────────────────────────────────────────

@settlements_bp.route("/transfers/<int:transfer_id>/pay", methods=["POST"])
@require_auth
def mark_paid(transfer_id: int):
    """POST /transfers/:id/pay — Confirm a payment. Body: {"method": "cash"|...}."""
    data = MarkPaidSchema().load(request.get_json(silent=True) or {})
    transfer = settlement_service.mark_transfer_paid(
        transfer_id=transfer_id,
        caller_id=g.user_id,
        method=data["method"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_transfer(transfer), "warnings": []}), 200


@settlements_bp.route("/transfers/<int:transfer_id>/revert", methods=["POST"])
@require_auth
def revert(transfer_id: int):
    """POST /transfers/:id/revert — Retract a payment confirmation."""
    transfer = settlement_service.revert_transfer(
        transfer_id=transfer_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_transfer(transfer), "warnings": []}), 200
