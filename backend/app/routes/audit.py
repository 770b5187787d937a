"""
routes/audit.py — Read-only access to the audit trail.

There is no write endpoint: audit records are appended by the services as a
side effect of every monetary write.

Endpoints (base url_prefix=/api/v1/audit):
  GET /audit/:table/:record_id   → 200  history of one row, oldest first
      table ∈ {entries, participants, transfers}
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.audit_record import AuditRecord
from backend.app.services import audit_service
from backend.app.services.integrity_service import format_money

audit_bp = Blueprint("audit", __name__)


def _money_or_none(value):
    return format_money(value) if value is not None else None


def _serialize_record(r: AuditRecord) -> dict:
    return {
        "id": r.id,
        "table": r.table_name,
        "record_id": r.record_id,
        "session_id": r.session_id,
        "operation": r.operation.value,
        "actor_id": r.actor_id,
        "old_amount": _money_or_none(r.old_amount),
        "new_amount": _money_or_none(r.new_amount),
        "old_state": r.old_state,
        "new_state": r.new_state,
        "change_reason": r.change_reason,
        "created_at": r.created_at.isoformat(),
    }


@audit_bp.route("/<string:table>/<int:record_id>", methods=["GET"])
@require_auth
def get_audit_history(table: str, record_id: int):
    """
    GET /audit/:table/:record_id

    Also works for deleted entries: their history outlives the row.
    """
    records = audit_service.get_audit_history(
        table_name=table,
        record_id=record_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_record(r) for r in records],
        "warnings": [],
    }), 200
