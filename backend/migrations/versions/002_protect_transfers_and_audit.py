"""Protect transfers and audit records from destructive writes.

Revision: 002_protect_transfers_and_audit
Created:  2026-10-19

DB enforcement layer for two hard rules the services already follow:
  - transfers are never deleted; "undo" is a pay_state transition.
  - audit_records are append-only: no UPDATE, no DELETE.

Trigger design:
  Function : fn_reject_row_change()
    - Raises EXCEPTION with SQLSTATE '42501' (insufficient_privilege),
      naming the table and the operation.

  Triggers :
    trg_transfers_no_delete     BEFORE DELETE          ON transfers
    trg_audit_records_immutable BEFORE UPDATE OR DELETE ON audit_records

PostgreSQL only. The SQLite database used by the test suite does not get
these triggers; the services never issue such statements anyway.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
"""

from __future__ import annotations

from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "002_protect_transfers_and_audit"
down_revision: str | None = "001_initial_schema"
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("""
        CREATE OR REPLACE FUNCTION fn_reject_row_change()
        RETURNS TRIGGER
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION '% on % is not allowed', TG_OP, TG_TABLE_NAME
                USING ERRCODE = '42501';
        END;
        $$
    """)

    op.execute("""
        CREATE TRIGGER trg_transfers_no_delete
        BEFORE DELETE ON transfers
        FOR EACH ROW
        EXECUTE FUNCTION fn_reject_row_change()
    """)

    op.execute("""
        CREATE TRIGGER trg_audit_records_immutable
        BEFORE UPDATE OR DELETE ON audit_records
        FOR EACH ROW
        EXECUTE FUNCTION fn_reject_row_change()
    """)


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("DROP TRIGGER IF EXISTS trg_audit_records_immutable ON audit_records")
    op.execute("DROP TRIGGER IF EXISTS trg_transfers_no_delete ON transfers")
    op.execute("DROP FUNCTION IF EXISTS fn_reject_row_change()")
