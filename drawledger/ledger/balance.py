"""The only code allowed to change ``Wallet.balance``.

Both operations lock the wallet row and re-read it inside the caller's
transaction, so the balance check and the write commit or roll back together
with whatever ledger rows the caller writes next to them. Callers must already
be inside a ``Session.begin()`` scope.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import InsufficientFunds, NotFound, ValidationError
from ..models import Wallet

logger = logging.getLogger(__name__)


def _lock_wallet(session: Session, wallet_id: int) -> Wallet:
    wallet = session.scalar(
        select(Wallet)
        .where(Wallet.id == wallet_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if wallet is None:
        raise NotFound("Wallet not found")
    return wallet


def _check_amount(amount: Decimal) -> Decimal:
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Amount must be positive", details={"amount": str(amount)})
    return amount


def credit(session: Session, wallet_id: int, amount: Decimal) -> Wallet:
    """Add ``amount`` to the wallet and return the locked, updated row."""

    amount = _check_amount(amount)
    wallet = _lock_wallet(session, wallet_id)
    wallet.balance = Decimal(wallet.balance) + amount
    session.flush()
    logger.debug(f"Credited {amount} to wallet {wallet_id}")
    return wallet


def debit(session: Session, wallet_id: int, amount: Decimal) -> Wallet:
    """Subtract ``amount`` from the wallet.

    Raises
    ------
    InsufficientFunds
        If the balance would go negative. Nothing is written in that case.
    """

    amount = _check_amount(amount)
    wallet = _lock_wallet(session, wallet_id)
    balance = Decimal(wallet.balance)
    if balance < amount:
        raise InsufficientFunds(
            "Insufficient balance",
            details={"balance": str(balance), "required": str(amount)},
        )
    wallet.balance = balance - amount
    session.flush()
    logger.debug(f"Debited {amount} from wallet {wallet_id}")
    return wallet


__all__ = ["credit", "debit"]
