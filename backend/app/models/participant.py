"""
models/participant.py — Participant table definition.

Key design points:
  - total_credit (cash-outs) and total_debit (buy-ins) are a derived cache of
    the session's Entry rows. They are only written by
    ledger_service.recompute_participant_totals(), inside the same flush as
    the Entry mutation that caused the change.
  - Both accumulators are NUMERIC(12, 2) and non-negative (CHECKs below).
  - UNIQUE(session_id, user_id) — a user joins a session at most once.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Participant(db.Model):
    __tablename__ = "participants"

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_participants_session_user"),
        CheckConstraint("total_credit >= 0", name="ck_participants_credit_nonnegative"),
        CheckConstraint("total_debit >= 0", name="ck_participants_debit_nonnegative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    session_id: Mapped[int] = mapped_column(
        ForeignKey("game_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Roster identity from the membership collaborator.
    user_id: Mapped[int] = mapped_column(
        nullable=False,
    )

    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default="0",
    )

    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default="0",
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    session: Mapped["GameSession"] = relationship(  # noqa: F821
        "GameSession",
        back_populates="participants",
    )

    entries: Mapped[list["Entry"]] = relationship(  # noqa: F821
        "Entry",
        back_populates="participant",
    )

    @property
    def net_position(self) -> Decimal:
        """Negative means the participant owes money."""
        return self.total_credit - self.total_debit

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Participant id={self.id} "
            f"session_id={self.session_id} "
            f"user_id={self.user_id} "
            f"net={self.net_position}>"
        )
