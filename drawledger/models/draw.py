"""Database models for draws, their prize positions, entries and winners."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Integer,
    String,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
    func,
    select,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, Session

from .base import Base
from .id_type import ID_TYPE, MONEY_TYPE
from ..errors import StateError

if TYPE_CHECKING:
    from .user import User


DRAW_STATUSES = ("UPCOMING", "ACTIVE", "DRAWING", "COMPLETED")

# Allowed forward moves. Settlement may start straight from UPCOMING.
_DRAW_TRANSITIONS = {
    "UPCOMING": {"ACTIVE", "DRAWING"},
    "ACTIVE": {"DRAWING"},
    "DRAWING": {"COMPLETED"},
    "COMPLETED": set(),
}


class Draw(Base):
    """A time-boxed prize pool.

    ``draw_date`` is both the entry cutoff and the earliest settlement time.
    """

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    """Display title."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="UPCOMING")
    """Lifecycle status; only ever moves forward."""

    entry_price: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    """Price of one ticket."""

    max_entries: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Ticket inventory; ``None`` means unlimited."""

    current_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Running count of tickets sold."""

    draw_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    """Scheduled settlement time and entry cutoff."""

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """When settlement committed."""

    settlement_meta: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """Audit facts recorded at settlement (entry count, target, algorithm)."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    prizes: Mapped[list["Prize"]] = relationship(
        back_populates="draw",
        cascade="all, delete-orphan",
        order_by="Prize.position",
    )
    entries: Mapped[list["Entry"]] = relationship(
        back_populates="draw", cascade="all, delete-orphan"
    )
    winners: Mapped[list["Winner"]] = relationship(
        back_populates="draw",
        cascade="all, delete-orphan",
        order_by="Winner.position",
    )

    __table_args__ = (
        CheckConstraint(f"status IN {DRAW_STATUSES!r}", name="status_enum"),
        CheckConstraint("current_entries >= 0", name="current_entries_non_negative"),
        Index("ix_draws_status", "status"),
    )

    def __init__(
        self,
        *,
        title: str,
        entry_price: Decimal,
        draw_date: datetime,
        status: str = "UPCOMING",
        max_entries: Optional[int] = None,
        description: Optional[str] = None,
        prizes: Optional[list["Prize"]] = None,
    ) -> None:
        self.title = title
        self.entry_price = entry_price
        self.draw_date = draw_date
        self.status = status
        self.max_entries = max_entries
        self.current_entries = 0
        self.description = description
        if prizes is not None:
            self.prizes = prizes

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Draw(id={id}, title={title}, status={status})>".format(
            id=self.id, title=self.title, status=self.status
        )

    @property
    def is_closed(self) -> bool:
        return self.status in ("DRAWING", "COMPLETED")

    def advance_status(self, new_status: str) -> None:
        """Move the draw forward to ``new_status``.

        Raises
        ------
        StateError
            If ``new_status`` is unknown or would move the draw backward.
        """

        if new_status not in DRAW_STATUSES:
            raise StateError(f"Unknown draw status {new_status!r}")
        if new_status not in _DRAW_TRANSITIONS[self.status]:
            raise StateError(
                f"Draw cannot move from {self.status} to {new_status}",
                details={"status": self.status},
            )
        self.status = new_status

    @classmethod
    def get_for_update(cls, session: Session, draw_id: int) -> Optional["Draw"]:
        """Load ``draw_id`` with a row lock held until the transaction ends."""

        stmt = (
            select(cls)
            .where(cls.id == draw_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.scalar(stmt)

    @classmethod
    def completed(cls, session: Session, limit: int = 20) -> list["Draw"]:
        """Settled draws, latest draw date first."""

        stmt = (
            select(cls)
            .where(cls.status == "COMPLETED")
            .order_by(cls.draw_date.desc(), cls.id.desc())
            .limit(limit)
        )
        return list(session.scalars(stmt).all())


class Prize(Base):
    """Prize position of a draw; position 1 is paid to the first winner."""

    __tablename__ = "prizes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_amount: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    draw: Mapped["Draw"] = relationship(back_populates="prizes")

    __table_args__ = (
        UniqueConstraint("draw_id", "position", name="uq_prizes_draw_position"),
        CheckConstraint("position >= 1", name="position_positive"),
    )

    def __init__(
        self,
        *,
        position: int,
        prize_amount: Decimal,
        description: Optional[str] = None,
        draw_id: Optional[int] = None,
    ) -> None:
        self.position = position
        self.prize_amount = prize_amount
        self.description = description
        if draw_id is not None:
            self.draw_id = draw_id


class Entry(Base):
    """One purchased ticket. Never modified after creation."""

    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(timezone.utc),
    )

    user: Mapped["User"] = relationship(back_populates="entries")
    draw: Mapped["Draw"] = relationship(back_populates="entries")

    __table_args__ = (Index("ix_entries_draw_user", "draw_id", "user_id"),)

    def __init__(self, *, user_id: int, draw_id: int, ticket_number: str) -> None:
        self.user_id = user_id
        self.draw_id = draw_id
        self.ticket_number = ticket_number

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<Entry(id={self.id}, draw_id={self.draw_id}, user_id={self.user_id}, ticket={self.ticket_number})>"

    @classmethod
    def count_for_user(cls, session: Session, draw_id: int, user_id: int) -> int:
        return session.scalar(
            select(func.count(cls.id)).where(
                cls.draw_id == draw_id, cls.user_id == user_id
            )
        ) or 0

    @classmethod
    def for_user(cls, session: Session, user_id: int) -> list["Entry"]:
        """Tickets held by ``user_id`` across all draws, newest first."""

        stmt = (
            select(cls)
            .where(cls.user_id == user_id)
            .order_by(cls.created_at.desc(), cls.id.desc())
        )
        return list(session.scalars(stmt).all())


class Winner(Base):
    """Settlement outcome for one user in one draw.

    ``prize_amount`` is a snapshot of the prize position at settlement time and
    is ``None`` for winners beyond the configured prize positions.
    """

    __tablename__ = "winners"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY_TYPE, nullable=True)
    ticket_number: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(timezone.utc),
    )

    draw: Mapped["Draw"] = relationship(back_populates="winners")
    user: Mapped["User"] = relationship(back_populates="wins")

    __table_args__ = (
        UniqueConstraint("draw_id", "user_id", name="uq_winners_draw_user"),
        UniqueConstraint("draw_id", "position", name="uq_winners_draw_position"),
    )

    def __init__(
        self,
        *,
        draw_id: int,
        user_id: int,
        position: int,
        ticket_number: str,
        prize_amount: Optional[Decimal] = None,
    ) -> None:
        self.draw_id = draw_id
        self.user_id = user_id
        self.position = position
        self.ticket_number = ticket_number
        self.prize_amount = prize_amount

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Winner(draw_id={self.draw_id}, user_id={self.user_id}, "
            f"position={self.position}, prize_amount={self.prize_amount})>"
        )


__all__ = ["Draw", "Prize", "Entry", "Winner", "DRAW_STATUSES"]
