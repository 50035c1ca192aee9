from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, Text, func, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .id_type import ID_TYPE, MONEY_TYPE

if TYPE_CHECKING:
    from .transaction import LedgerTransaction
    from .user import User


WITHDRAWAL_STATUSES = ("PENDING", "UNDER_REVIEW", "COMPLETED", "REJECTED")
TERMINAL_WITHDRAWAL_STATUSES = ("COMPLETED", "REJECTED")


class WithdrawalRequest(Base):
    """A user's request to pay ``net_amount`` out to ``crypto_address``.

    The full ``amount`` is debited when the request is created; ``fee`` is
    what the platform keeps.
    """

    __tablename__ = "withdrawal_requests"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    fee: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    crypto_address: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(timezone.utc),
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped["User"] = relationship(
        back_populates="withdrawal_requests", foreign_keys=[user_id]
    )
    transaction: Mapped[Optional["LedgerTransaction"]] = relationship(
        foreign_keys=[transaction_id]
    )

    __table_args__ = (
        CheckConstraint(f"status IN {WITHDRAWAL_STATUSES!r}", name="status_enum"),
        CheckConstraint("amount > 0", name="amount_positive"),
    )

    def __init__(
        self,
        *,
        user_id: int,
        amount: Decimal,
        fee: Decimal,
        net_amount: Decimal,
        crypto_address: str,
        transaction_id: Optional[int] = None,
        status: str = "PENDING",
    ) -> None:
        self.user_id = user_id
        self.amount = amount
        self.fee = fee
        self.net_amount = net_amount
        self.crypto_address = crypto_address
        self.transaction_id = transaction_id
        self.status = status

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<WithdrawalRequest(id={self.id}, user_id={self.user_id}, "
            f"amount={self.amount}, status='{self.status}')>"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WITHDRAWAL_STATUSES

    @classmethod
    def get_for_update(
        cls, session: Session, withdrawal_id: int
    ) -> Optional["WithdrawalRequest"]:
        stmt = (
            select(cls)
            .where(cls.id == withdrawal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.scalar(stmt)

    @classmethod
    def for_user(cls, session: Session, user_id: int) -> list["WithdrawalRequest"]:
        stmt = (
            select(cls)
            .where(cls.user_id == user_id)
            .order_by(cls.requested_at.desc(), cls.id.desc())
        )
        return list(session.scalars(stmt).all())

    @classmethod
    def review_queue(
        cls, session: Session, status: Optional[str] = None
    ) -> list["WithdrawalRequest"]:
        """All requests, newest first, optionally only those in ``status``."""

        stmt = select(cls).order_by(cls.requested_at.desc(), cls.id.desc())
        if status is not None:
            stmt = stmt.where(cls.status == status)
        return list(session.scalars(stmt).all())
