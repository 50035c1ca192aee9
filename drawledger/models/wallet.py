from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .id_type import ID_TYPE, MONEY_TYPE

if TYPE_CHECKING:
    from .user import User


class Wallet(Base):
    """Custodial balance owned by exactly one user.

    ``balance`` must only be changed through :mod:`drawledger.ledger.balance`
    so that every mutation happens under a row lock in the caller's
    transaction.
    """

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(
        MONEY_TYPE, nullable=False, default=Decimal("0")
    )
    deposit_address: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    """Provider pay address from the most recent deposit intent."""

    withdrawal_address: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    """Payout address; once set it can never be changed."""

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

    user: Mapped["User"] = relationship(back_populates="wallet")

    __table_args__ = (CheckConstraint("balance >= 0", name="balance_non_negative"),)

    def __init__(
        self,
        *,
        user: Optional["User"] = None,
        user_id: Optional[int] = None,
        balance: Decimal = Decimal("0"),
        deposit_address: Optional[str] = None,
        withdrawal_address: Optional[str] = None,
    ) -> None:
        if user is not None:
            self.user = user
        if user_id is not None:
            self.user_id = user_id
        self.balance = balance
        self.deposit_address = deposit_address
        self.withdrawal_address = withdrawal_address

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<Wallet(id={self.id}, user_id={self.user_id}, balance={self.balance})>"

    @classmethod
    def get_by_user_id(
        cls, session: Session, user_id: int, *, for_update: bool = False
    ) -> Optional["Wallet"]:
        """Return the wallet owned by ``user_id``.

        With ``for_update`` the row is locked for the rest of the transaction
        and re-read from the store, discarding any stale identity-map copy.
        """

        stmt = select(cls).where(cls.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return session.scalar(stmt)

    @classmethod
    def get_by_deposit_address(
        cls, session: Session, address: str
    ) -> Optional["Wallet"]:
        return session.scalar(select(cls).where(cls.deposit_address == address))
