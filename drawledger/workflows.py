import logging
from typing import TYPE_CHECKING, Optional, Sequence
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session, sessionmaker

from .config import Settings
from .errors import NotFound, ValidationError
from .models import Draw, LedgerTransaction, Prize, User, Wallet
from .models.utils import generate_referral_code, random_base62
from .prize_draw.engine import SettlementEngine, SettlementResult
from .prize_draw.shuffle import RandBelow
from .tickets import Purchase, enter_draw
from .withdrawals import create_withdrawal, review_withdrawal

if TYPE_CHECKING:
    from .payments.api import PaymentClient, PaymentIntent

logger = logging.getLogger(__name__)


def register_user(
    session: Session,
    email: str,
    role: str = "USER",
    referral_code: Optional[str] = None,
) -> User:
    """Create a new user together with their empty wallet.

    The workflow performs two coordinated tasks:

    1. Resolve ``referral_code`` (if given) to the referring user.
    2. Persist the User with a fresh referral code of its own and a zero
       balance Wallet.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    email : str
        Login email; must not be registered yet.
    role : str, default: "USER"
        ``"USER"`` or ``"ADMIN"``.
    referral_code : Optional[str]
        Code of the user who referred this one.

    Returns
    -------
    User
        The persisted user; ``user.wallet`` is populated.

    Raises
    ------
    ValidationError
        If the email is taken or the referral code is unknown.
    """

    if User.get_by_email(session, email) is not None:
        raise ValidationError("Email already registered")

    referred_by_id = None
    if referral_code:
        referrer = User.get_by_referral_code(session, referral_code)
        if referrer is None:
            raise ValidationError("Unknown referral code")
        referred_by_id = referrer.id

    user = User(
        email=email,
        role=role,
        referral_code=generate_referral_code(session),
        referred_by_id=referred_by_id,
    )
    session.add(user)
    session.flush()

    wallet = Wallet(user=user)
    session.add(wallet)
    session.flush()
    return user


def create_draw(
    session: Session,
    title: str,
    entry_price: Decimal,
    draw_date: datetime,
    prizes: Sequence[Decimal],
    max_entries: Optional[int] = None,
    description: Optional[str] = None,
    status: str = "UPCOMING",
) -> Draw:
    """Create a draw with its prize positions.

    ``prizes`` is ordered: the first amount is position 1.
    """

    if Decimal(entry_price) <= 0:
        raise ValidationError("Entry price must be positive")
    if max_entries is not None and max_entries < 1:
        raise ValidationError("Max entries must be at least 1")
    if any(Decimal(amount) < 0 for amount in prizes):
        raise ValidationError("Prize amounts must not be negative")

    draw = Draw(
        title=title,
        entry_price=Decimal(entry_price),
        draw_date=draw_date,
        status=status,
        max_entries=max_entries,
        description=description,
        prizes=[
            Prize(position=i + 1, prize_amount=Decimal(amount))
            for i, amount in enumerate(prizes)
        ],
    )
    session.add(draw)
    session.flush()
    return draw


def activate_draw(session: Session, draw_id: int) -> Draw:
    """Open an UPCOMING draw for ticket sales."""

    draw = Draw.get_for_update(session, draw_id)
    if draw is None:
        raise NotFound("Draw not found")
    draw.advance_status("ACTIVE")
    session.flush()
    return draw


def create_deposit_intent(
    session_factory: sessionmaker,
    user_id: int,
    amount: Decimal,
    client: "PaymentClient",
    settings: Settings,
) -> "PaymentIntent":
    """Ask the payment provider for a pay address and record a pending deposit.

    Unlike the other workflows this one opens its own sessions: the provider
    call can take many seconds and must not run while a store transaction
    (on SQLite, the database write lock) is held. The wallet is checked in a
    short read scope, the provider is called with no transaction open, and
    only then is a second transaction opened to write the PENDING row and the
    deposit address.

    The order id sent to the provider is ``"<user id>:<random token>"`` so that
    the callback can be routed back to the user even if the pending
    transaction is missing. The returned pay address becomes the wallet's
    deposit address.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory bound to the store engine.
    user_id : int
        Depositing user.
    amount : Decimal
        Price amount requested from the provider.
    client : PaymentClient
        Provider client.
    settings : Settings
        Minimum deposit, callback URL and currencies.

    Raises
    ------
    ValidationError
        If ``amount`` is below the configured minimum deposit.
    NotFound
        If the user has no wallet.
    UpstreamError
        If the provider call fails; nothing is written in that case.
    """

    amount = Decimal(amount)
    if amount < settings.minimum_deposit:
        raise ValidationError(
            f"Minimum deposit is ${settings.minimum_deposit}",
            details={"minimum": str(settings.minimum_deposit)},
        )

    with session_factory() as session:
        if Wallet.get_by_user_id(session, user_id) is None:
            raise NotFound("Wallet not found")

    intent = client.create_payment(
        amount=amount,
        order_id=f"{user_id}:{random_base62(10)}",
        callback_url=settings.deposit_callback_url,
        description=f"Wallet deposit for user {user_id}",
        pay_currency=settings.pay_currency,
        price_currency=settings.price_currency,
    )

    with session_factory.begin() as session:
        wallet = Wallet.get_by_user_id(session, user_id, for_update=True)
        if wallet is None:
            raise NotFound("Wallet not found")
        session.add(
            LedgerTransaction(
                user_id=user_id,
                type="DEPOSIT",
                status="PENDING",
                amount=amount,
                external_payment_id=intent.payment_id,
                to_address=intent.pay_address,
                description=f"Deposit of ${amount}",
            )
        )
        wallet.deposit_address = intent.pay_address
    logger.info(
        f"Deposit intent {intent.payment_id} of {amount} created for user {user_id}"
    )
    return intent


def purchase_entries(
    session: Session,
    user: User,
    draw_id: int,
    quantity: int,
    settings: Settings,
    now: Optional[datetime] = None,
) -> Purchase:
    """Buy ``quantity`` tickets; see :func:`drawledger.tickets.enter_draw`."""

    return enter_draw(session, user, draw_id, quantity, settings, now=now)


def execute_draw(
    session: Session,
    draw_id: int,
    winner_count: Optional[int] = None,
    now: Optional[datetime] = None,
    randbelow: Optional[RandBelow] = None,
) -> SettlementResult:
    """Settle ``draw_id``: select winners and pay their prizes.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session. The settlement commits with the caller's
        transaction.
    draw_id : int
        Draw to settle.
    winner_count : Optional[int]
        Number of winners; defaults to the number of prize positions.
    now : Optional[datetime]
        Settlement time, defaults to now (UTC).
    randbelow : Optional[RandBelow]
        Deterministic random source for tests.

    Returns
    -------
    SettlementResult
        The completed draw, winner rows and the total paid out.
    """

    engine = SettlementEngine(session, randbelow=randbelow)
    return engine.settle(
        draw_id, winner_count, now=now or datetime.now(timezone.utc)
    )


__all__ = [
    "activate_draw",
    "create_deposit_intent",
    "create_draw",
    "create_withdrawal",
    "execute_draw",
    "purchase_entries",
    "register_user",
    "review_withdrawal",
]
