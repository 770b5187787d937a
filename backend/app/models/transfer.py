"""
models/transfer.py — Transfer table definition (one computed settlement payment).

Key design points:
  - Rows are created only by settlement_service.calculate_settlement().
  - After creation only pay_state, payment_method and paid_at change.
    Rows are never deleted; "undo" is the paid → pending transition.
    Migration 002 adds a PostgreSQL trigger that rejects DELETE.
  - CHECK(payer_id <> payee_id) — no self-payment.
  - Insertion order (id) is the calculator's output order; reads order by id.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.enums import PaymentMethod, PayState, value_enum


class Transfer(db.Model):
    __tablename__ = "transfers"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        CheckConstraint(
            "payer_id <> payee_id",
            name="ck_transfers_no_self_payment",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    session_id: Mapped[int] = mapped_column(
        ForeignKey("game_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    payer_id: Mapped[int] = mapped_column(
        ForeignKey("participants.id", ondelete="RESTRICT"),
        nullable=False,
    )

    payee_id: Mapped[int] = mapped_column(
        ForeignKey("participants.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    pay_state: Mapped[PayState] = mapped_column(
        value_enum(PayState, "pay_state_enum"),
        nullable=False,
        default=PayState.PENDING,
        server_default=PayState.PENDING.value,
    )

    payment_method: Mapped[PaymentMethod | None] = mapped_column(
        value_enum(PaymentMethod, "payment_method_enum"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    session: Mapped["GameSession"] = relationship(  # noqa: F821
        "GameSession",
        back_populates="transfers",
    )

    payer: Mapped["Participant"] = relationship(  # noqa: F821
        "Participant",
        foreign_keys=[payer_id],
    )

    payee: Mapped["Participant"] = relationship(  # noqa: F821
        "Participant",
        foreign_keys=[payee_id],
    )

    @property
    def is_paid(self) -> bool:
        return self.pay_state == PayState.PAID

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Transfer id={self.id} "
            f"session_id={self.session_id} "
            f"from={self.payer_id} "
            f"to={self.payee_id} "
            f"amount={self.amount} "
            f"state={self.pay_state}>"
        )
