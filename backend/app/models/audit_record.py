"""
models/audit_record.py — AuditRecord table definition.

Append-only. One row per insert/update/delete of an Entry, a Participant's
accumulators, or a Transfer. Written by audit_service in the same flush as
the change it describes, so a failed audit write fails the whole request.
Migration 002 adds PostgreSQL triggers that reject UPDATE and DELETE here.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.models.enums import AuditOperation, value_enum


class AuditRecord(db.Model):
    __tablename__ = "audit_records"

    __table_args__ = (
        Index("idx_audit_records_target", "table_name", "record_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    table_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    # No FK: the audited row may be deleted (entries) while its history stays.
    record_id: Mapped[int] = mapped_column(
        nullable=False,
    )

    # Owning game session, used to authorize history reads.
    session_id: Mapped[int] = mapped_column(
        nullable=False,
        index=True,
    )

    operation: Mapped[AuditOperation] = mapped_column(
        value_enum(AuditOperation, "audit_operation_enum"),
        nullable=False,
    )

    # None for system-initiated changes.
    actor_id: Mapped[int | None] = mapped_column(
        nullable=True,
    )

    old_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    new_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    old_state: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    new_state: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    change_reason: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<AuditRecord id={self.id} "
            f"{self.table_name}#{self.record_id} "
            f"op={self.operation} "
            f"reason={self.change_reason}>"
        )
