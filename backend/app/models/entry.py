"""
models/entry.py — Entry table definition (one buy-in or cash-out).

Entries are the source of truth for a participant's totals. Amount bounds
and precision are enforced by the schema and ledger_service; the CHECK is
the last line of defence.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.enums import EntryKind, value_enum


class Entry(db.Model):
    __tablename__ = "entries"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_entries_amount_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    session_id: Mapped[int] = mapped_column(
        ForeignKey("game_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    participant_id: Mapped[int] = mapped_column(
        ForeignKey("participants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    kind: Mapped[EntryKind] = mapped_column(
        value_enum(EntryKind, "entry_kind_enum"),
        nullable=False,
    )

    # NUMERIC(12, 2). Never Float.
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    recorded_by_user_id: Mapped[int | None] = mapped_column(
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    session: Mapped["GameSession"] = relationship(  # noqa: F821
        "GameSession",
        back_populates="entries",
    )

    participant: Mapped["Participant"] = relationship(  # noqa: F821
        "Participant",
        back_populates="entries",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Entry id={self.id} "
            f"participant_id={self.participant_id} "
            f"kind={self.kind} "
            f"amount={self.amount}>"
        )
