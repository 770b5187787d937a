"""Initial schema: game sessions with their participants, entries, transfers and audit log.

Revision: 001_initial_schema
Created:  2026-10-19

Creates the ChipLedger settlement engine schema.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order (FK dependency order):
  game_sessions → participants → entries → transfers → settlement_runs,
  then audit_records (no FKs: history outlives deleted entries).

Enumerated columns are VARCHAR(20) with a CHECK listing the allowed values,
matching the models' Enum(native_enum=False). No PostgreSQL enum types.

ON DELETE policies:
  every FK → RESTRICT. Nothing in this schema is cascade-deleted; entries
  are the only rows the application ever deletes.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def _values_check(column: str, values: tuple[str, ...], name: str) -> sa.CheckConstraint:
    allowed = ", ".join(f"'{v}'" for v in values)
    return sa.CheckConstraint(f"{column} IN ({allowed})", name=name)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    # ── game_sessions ──────────────────────────────────────────────────────
    # host_user_id is an identity from the auth collaborator; no local FK.
    # settled_at non-null = settlement computed (idempotency marker).

    op.create_table(
        "game_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("host_user_id", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="open",
        ),
        _created_at(),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_game_sessions"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_game_sessions_name_nonempty",
        ),
        _values_check("status", ("open", "closed"), "ck_game_sessions_status"),
        sa.CheckConstraint(
            "settled_at IS NULL OR status = 'closed'",
            name="ck_game_sessions_settled_only_when_closed",
        ),
    )
    op.create_index("ix_game_sessions_host_user_id", "game_sessions", ["host_user_id"])

    # ── participants ───────────────────────────────────────────────────────
    # total_credit / total_debit are the derived accumulators kept in sync
    # with entries by services/ledger_service.py.

    op.create_table(
        "participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("game_sessions.id", ondelete="RESTRICT",
                          name="fk_participants_session"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("total_credit", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_debit", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_participants"),
        sa.UniqueConstraint("session_id", "user_id", name="uq_participants_session_user"),
        sa.CheckConstraint("total_credit >= 0", name="ck_participants_credit_nonnegative"),
        sa.CheckConstraint("total_debit >= 0", name="ck_participants_debit_nonnegative"),
    )
    op.create_index("ix_participants_session_id", "participants", ["session_id"])

    # ── entries ────────────────────────────────────────────────────────────

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("game_sessions.id", ondelete="RESTRICT",
                          name="fk_entries_session"),
            nullable=False,
        ),
        sa.Column(
            "participant_id",
            sa.Integer(),
            sa.ForeignKey("participants.id", ondelete="RESTRICT",
                          name="fk_entries_participant"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("recorded_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_entries"),
        sa.CheckConstraint("amount > 0", name="ck_entries_amount_positive"),
        _values_check("kind", ("debit", "credit"), "ck_entries_kind"),
    )
    op.create_index("ix_entries_session_id", "entries", ["session_id"])
    op.create_index("ix_entries_participant_id", "entries", ["participant_id"])

    # ── transfers ──────────────────────────────────────────────────────────
    # Never deleted (enforced by the trigger in 002). Only pay_state,
    # payment_method and paid_at change after insert.

    op.create_table(
        "transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("game_sessions.id", ondelete="RESTRICT",
                          name="fk_transfers_session"),
            nullable=False,
        ),
        sa.Column(
            "payer_id",
            sa.Integer(),
            sa.ForeignKey("participants.id", ondelete="RESTRICT",
                          name="fk_transfers_payer"),
            nullable=False,
        ),
        sa.Column(
            "payee_id",
            sa.Integer(),
            sa.ForeignKey("participants.id", ondelete="RESTRICT",
                          name="fk_transfers_payee"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("pay_state", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(20), nullable=True),
        _created_at(),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_transfers"),
        sa.CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        sa.CheckConstraint("payer_id <> payee_id", name="ck_transfers_no_self_payment"),
        _values_check("pay_state", ("pending", "paid"), "ck_transfers_pay_state"),
        _values_check(
            "payment_method",
            ("cash", "paypal", "venmo", "zelle"),
            "ck_transfers_payment_method",
        ),
    )
    op.create_index("ix_transfers_session_id", "transfers", ["session_id"])

    # ── settlement_runs ────────────────────────────────────────────────────
    # One row per calculate-settlement call, including refused ones.

    op.create_table(
        "settlement_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("game_sessions.id", ondelete="RESTRICT",
                          name="fk_settlement_runs_session"),
            nullable=False,
        ),
        sa.Column("attempted_by", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_code", sa.String(50), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("total_credit", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_debit", sa.Numeric(12, 2), nullable=True),
        sa.Column("transfers_created", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_settlement_runs"),
        _values_check(
            "status",
            ("computed", "reused", "failed"),
            "ck_settlement_runs_status",
        ),
    )
    op.create_index("ix_settlement_runs_session_id", "settlement_runs", ["session_id"])

    # ── audit_records ──────────────────────────────────────────────────────
    # Append-only (enforced by the trigger in 002). record_id has no FK so
    # the history of a deleted entry stays readable.

    op.create_table(
        "audit_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("table_name", sa.String(50), nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("operation", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("old_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("new_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("old_state", sa.String(20), nullable=True),
        sa.Column("new_state", sa.String(20), nullable=True),
        sa.Column("change_reason", sa.String(50), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_records"),
        _values_check(
            "operation",
            ("insert", "update", "delete"),
            "ck_audit_records_operation",
        ),
    )
    op.create_index(
        "idx_audit_records_target", "audit_records", ["table_name", "record_id"],
    )
    op.create_index("ix_audit_records_session_id", "audit_records", ["session_id"])


def downgrade() -> None:
    """Drops everything in reverse FK order."""
    op.drop_index("ix_audit_records_session_id", table_name="audit_records")
    op.drop_index("idx_audit_records_target", table_name="audit_records")
    op.drop_table("audit_records")

    op.drop_index("ix_settlement_runs_session_id", table_name="settlement_runs")
    op.drop_table("settlement_runs")

    op.drop_index("ix_transfers_session_id", table_name="transfers")
    op.drop_table("transfers")

    op.drop_index("ix_entries_participant_id", table_name="entries")
    op.drop_index("ix_entries_session_id", table_name="entries")
    op.drop_table("entries")

    op.drop_index("ix_participants_session_id", table_name="participants")
    op.drop_table("participants")

    op.drop_index("ix_game_sessions_host_user_id", table_name="game_sessions")
    op.drop_table("game_sessions")
