"""
models/game_session.py — GameSession table definition.

One recurring card-game event. Scheduling and cancellation belong to the
session-management collaborator; only the open/closed state lives here.

Key design points:
  - Only a CLOSED session may be settled.
  - `settled_at` is set exactly once, in the same unit of work that inserts
    the session's transfers. It is the "already computed" marker that
    freezes the session's entries.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.enums import SessionStatus, value_enum


class GameSession(db.Model):
    __tablename__ = "game_sessions"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_game_sessions_name_nonempty",
        ),
        CheckConstraint(
            "settled_at IS NULL OR status = 'closed'",
            name="ck_game_sessions_settled_only_when_closed",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Identity supplied by the auth collaborator; not a local FK.
    host_user_id: Mapped[int] = mapped_column(
        nullable=False,
        index=True,
    )

    status: Mapped[SessionStatus] = mapped_column(
        value_enum(SessionStatus, "session_status_enum"),
        nullable=False,
        default=SessionStatus.OPEN,
        server_default=SessionStatus.OPEN.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    participants: Mapped[list["Participant"]] = relationship(  # noqa: F821
        "Participant",
        back_populates="session",
        order_by="Participant.id",
    )

    entries: Mapped[list["Entry"]] = relationship(  # noqa: F821
        "Entry",
        back_populates="session",
    )

    transfers: Mapped[list["Transfer"]] = relationship(  # noqa: F821
        "Transfer",
        back_populates="session",
        order_by="Transfer.id",
    )

    @property
    def is_closed(self) -> bool:
        return self.status == SessionStatus.CLOSED

    @property
    def is_settled(self) -> bool:
        return self.settled_at is not None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<GameSession id={self.id} "
            f"status={self.status} "
            f"settled={self.is_settled}>"
        )
