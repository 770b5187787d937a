"""
models/settlement_run.py — One row per calculate-settlement call.

Operational log, separate from the audit trail: it records attempts
(computed, reused, failed), not monetary changes. Failed attempts are
written after the failed unit of work has been rolled back.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.models.enums import RunStatus, value_enum


class SettlementRun(db.Model):
    __tablename__ = "settlement_runs"

    id: Mapped[int] = mapped_column(primary_key=True)

    session_id: Mapped[int] = mapped_column(
        ForeignKey("game_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    attempted_by: Mapped[int | None] = mapped_column(
        nullable=True,
    )

    status: Mapped[RunStatus] = mapped_column(
        value_enum(RunStatus, "run_status_enum"),
        nullable=False,
    )

    error_code: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    total_credit: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    total_debit: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    transfers_created: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
        server_default="0",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<SettlementRun id={self.id} "
            f"session_id={self.session_id} "
            f"status={self.status}>"
        )
