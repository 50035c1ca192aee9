from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from sqlalchemy.orm import Session, Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    DateTime,
    ForeignKey,
    CheckConstraint,
    func,
    select,
)

from .base import Base
from .id_type import ID_TYPE

if TYPE_CHECKING:
    from .wallet import Wallet
    from .draw import Entry, Winner
    from .transaction import LedgerTransaction
    from .withdrawal import WithdrawalRequest


USER_ROLES = ("USER", "ADMIN")


class User(Base):
    """An account holder on the platform.

    Credentials and sessions live with the identity provider; this row only
    keeps what the ledger needs: the role, and who referred the user.
    """

    def __init__(
        self,
        email: str,
        role: str = "USER",
        referral_code: Optional[str] = None,
        referred_by_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ):
        """Create a new :class:`User` record.

        Parameters
        ----------
        email : str
            Login email, unique across users.
        role : str, optional
            ``"USER"`` (default) or ``"ADMIN"``.
        referral_code : str, optional
            Code other users enter at sign-up to name this user as referrer.
        referred_by_id : int, optional
            Primary key of the user who referred this one.
        created_at : datetime, optional
            Explicit creation timestamp.
        """

        self.email = email
        self.role = role
        self.referral_code = referral_code
        self.referred_by_id = referred_by_id
        if created_at is not None:
            self.created_at = created_at

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(10), nullable=False, default="USER")
    referral_code: Mapped[Optional[str]] = mapped_column(
        String(16), unique=True, nullable=True
    )
    referred_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(timezone.utc),
    )

    # relationships
    wallet: Mapped[Optional["Wallet"]] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    referred_by: Mapped[Optional["User"]] = relationship(
        remote_side="User.id", foreign_keys=[referred_by_id]
    )
    transactions: Mapped[list["LedgerTransaction"]] = relationship(
        back_populates="user",
        foreign_keys="LedgerTransaction.user_id",
    )
    entries: Mapped[list["Entry"]] = relationship(back_populates="user")
    wins: Mapped[list["Winner"]] = relationship(back_populates="user")
    withdrawal_requests: Mapped[list["WithdrawalRequest"]] = relationship(
        back_populates="user", foreign_keys="WithdrawalRequest.user_id"
    )

    __table_args__ = (
        CheckConstraint(f"role IN {USER_ROLES!r}", name="role_enum"),
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, email='{self.email}', role='{self.role}', "
            f"referred_by_id={self.referred_by_id})>"
        )

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    @classmethod
    def get_by_email(cls, session: Session, email: str) -> Optional["User"]:
        """Retrieve a user by email."""

        return session.scalar(select(cls).where(cls.email == email))

    @classmethod
    def get_by_referral_code(cls, session: Session, code: str) -> Optional["User"]:
        """Retrieve the user owning ``code``."""

        return session.scalar(select(cls).where(cls.referral_code == code))

    def referral_count(self, session: Session) -> int:
        """Number of users who signed up with this user as referrer."""

        return session.scalar(
            select(func.count(User.id)).where(User.referred_by_id == self.id)
        ) or 0

    def referrals(self, session: Session) -> list["User"]:
        """Users referred by this user, most recent sign-up first."""

        stmt = (
            select(User)
            .where(User.referred_by_id == self.id)
            .order_by(User.created_at.desc(), User.id.desc())
        )
        return list(session.scalars(stmt).all())
