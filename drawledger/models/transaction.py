from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .id_type import ID_TYPE, MONEY_TYPE

if TYPE_CHECKING:
    from .user import User
    from .withdrawal import WithdrawalRequest


TRANSACTION_TYPES = (
    "DEPOSIT",
    "ENTRY_PURCHASE",
    "PRIZE_WIN",
    "REFERRAL_BONUS",
    "WITHDRAWAL",
)
TRANSACTION_STATUSES = ("PENDING", "COMPLETED", "FAILED", "CANCELLED")


class LedgerTransaction(Base):
    """Typed, timestamped record of a balance-affecting event.

    Provider deposits are keyed by ``external_payment_id``; ``credited_amount``
    tracks how much of that payment has already reached the wallet so that
    repeated or growing provider reports only ever apply the difference.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    credited_amount: Mapped[Decimal] = mapped_column(
        MONEY_TYPE, nullable=False, default=Decimal("0")
    )
    external_payment_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    withdrawal_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE,
        ForeignKey("withdrawal_requests.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )
    referred_user_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    """Depositor a REFERRAL_BONUS row was paid for; unique, so one bonus each."""

    from_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    to_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
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

    user: Mapped["User"] = relationship(
        back_populates="transactions", foreign_keys=[user_id]
    )
    withdrawal: Mapped[Optional["WithdrawalRequest"]] = relationship(
        foreign_keys=[withdrawal_id]
    )

    __table_args__ = (
        CheckConstraint(f"type IN {TRANSACTION_TYPES!r}", name="type_enum"),
        CheckConstraint(f"status IN {TRANSACTION_STATUSES!r}", name="status_enum"),
        Index("ix_transactions_user_type_status", "user_id", "type", "status"),
    )

    def __init__(
        self,
        *,
        user_id: int,
        type: str,
        status: str,
        amount: Decimal,
        credited_amount: Decimal = Decimal("0"),
        external_payment_id: Optional[str] = None,
        withdrawal_id: Optional[int] = None,
        referred_user_id: Optional[int] = None,
        from_address: Optional[str] = None,
        to_address: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.user_id = user_id
        self.type = type
        self.status = status
        self.amount = amount
        self.credited_amount = credited_amount
        self.external_payment_id = external_payment_id
        self.withdrawal_id = withdrawal_id
        self.referred_user_id = referred_user_id
        self.from_address = from_address
        self.to_address = to_address
        self.description = description

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<LedgerTransaction(id={self.id}, user_id={self.user_id}, type='{self.type}', "
            f"status='{self.status}', amount={self.amount})>"
        )

    @classmethod
    def get_by_payment_id(
        cls, session: Session, payment_id: str, *, for_update: bool = False
    ) -> Optional["LedgerTransaction"]:
        """Return the transaction recorded for a provider payment id."""

        stmt = select(cls).where(cls.external_payment_id == payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return session.scalar(stmt)

    @classmethod
    def for_user(
        cls, session: Session, user_id: int, *, limit: int = 100
    ) -> list["LedgerTransaction"]:
        """Most recent transactions of ``user_id``, newest first."""

        stmt = (
            select(cls)
            .where(cls.user_id == user_id)
            .order_by(cls.created_at.desc(), cls.id.desc())
            .limit(limit)
        )
        return list(session.scalars(stmt).all())
