"""Withdrawal requests and their admin review state machine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.orm import Session

from .config import Settings
from .errors import NotFound, StateError, ValidationError
from .ledger import balance
from .models import LedgerTransaction, User, Wallet, WithdrawalRequest
from .models.withdrawal import WITHDRAWAL_STATUSES

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MIN_ADDRESS_LENGTH = 10

# Allowed review moves; re-requesting a terminal status is handled separately.
_REVIEW_TRANSITIONS = {
    "PENDING": {"UNDER_REVIEW", "COMPLETED", "REJECTED"},
    "UNDER_REVIEW": {"COMPLETED", "REJECTED"},
    "COMPLETED": set(),
    "REJECTED": set(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def withdrawal_fee(amount: Decimal, rate: Decimal) -> Decimal:
    """Flat fee on ``amount`` rounded to cents."""
    return (Decimal(amount) * Decimal(rate)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _validate_address(address: Optional[str]) -> str:
    if not address:
        raise ValidationError("Withdrawal address is required")
    address = address.strip()
    if len(address) < MIN_ADDRESS_LENGTH or any(ch.isspace() for ch in address):
        raise ValidationError("Invalid withdrawal address")
    return address


def create_withdrawal(
    session: Session,
    user: User,
    amount: Decimal,
    settings: Settings,
    *,
    address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WithdrawalRequest:
    """Open a withdrawal request for ``amount`` and debit it immediately.

    The destination defaults to the wallet's registered withdrawal address.
    Requests are only accepted Monday to Friday (UTC).

    Raises
    ------
    ValidationError
        Weekend, amount below the minimum or malformed address.
    NotFound
        ``user`` has no wallet.
    InsufficientFunds
        Balance below ``amount``.
    """

    current = now or _utcnow()
    if current.astimezone(timezone.utc).weekday() >= 5:
        raise ValidationError("Withdrawals are only processed Monday to Friday")

    amount = Decimal(amount)
    if amount < settings.minimum_withdrawal:
        raise ValidationError(
            f"Minimum withdrawal amount is ${settings.minimum_withdrawal}",
            details={"minimum": str(settings.minimum_withdrawal)},
        )

    wallet = Wallet.get_by_user_id(session, user.id)
    if wallet is None:
        raise NotFound("Wallet not found")
    destination = _validate_address(address or wallet.withdrawal_address)

    balance.debit(session, wallet.id, amount)

    fee = withdrawal_fee(amount, settings.withdrawal_fee_rate)
    tx = LedgerTransaction(
        user_id=user.id,
        type="WITHDRAWAL",
        status="PENDING",
        amount=amount,
        from_address=wallet.deposit_address,
        to_address=destination,
        description=f"Withdrawal request for ${amount}",
    )
    session.add(tx)
    session.flush()

    request = WithdrawalRequest(
        user_id=user.id,
        amount=amount,
        fee=fee,
        net_amount=amount - fee,
        crypto_address=destination,
        transaction_id=tx.id,
    )
    session.add(request)
    session.flush()
    tx.withdrawal_id = request.id
    session.flush()

    logger.info(
        f"Withdrawal {request.id} requested by user {user.id}: "
        f"amount={amount} fee={fee} net={request.net_amount}"
    )
    return request


def review_withdrawal(
    session: Session,
    admin: User,
    withdrawal_id: int,
    status: str,
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> WithdrawalRequest:
    """Move a withdrawal request to ``status`` on behalf of ``admin``.

    ``REJECTED`` cancels the linked transaction and refunds the full amount
    with a new ``DEPOSIT`` transaction tied to the request. ``COMPLETED`` only
    finalizes the linked transaction; the funds already left at creation.
    """

    if status not in WITHDRAWAL_STATUSES:
        raise ValidationError(f"Invalid status: {status}")

    request = WithdrawalRequest.get_for_update(session, withdrawal_id)
    if request is None:
        raise NotFound("Withdrawal request not found")

    if request.is_terminal and request.status == status:
        return request
    if status not in _REVIEW_TRANSITIONS[request.status]:
        raise StateError(
            f"Cannot move withdrawal from {request.status} to {status}",
            details={"currentStatus": request.status},
        )

    previous = request.status
    request.status = status
    request.reviewed_at = now or _utcnow()
    request.reviewed_by_id = admin.id
    if notes is not None:
        request.admin_notes = notes

    tx = request.transaction
    if status == "COMPLETED":
        if tx is not None:
            tx.status = "COMPLETED"
    elif status == "REJECTED":
        if tx is not None:
            tx.status = "CANCELLED"
        wallet = Wallet.get_by_user_id(session, request.user_id)
        if wallet is None:
            raise NotFound("Wallet not found")
        balance.credit(session, wallet.id, request.amount)
        session.add(
            LedgerTransaction(
                user_id=request.user_id,
                type="DEPOSIT",
                status="COMPLETED",
                amount=request.amount,
                withdrawal_id=request.id,
                description=f"Refund for rejected withdrawal #{request.id}",
            )
        )

    session.flush()
    logger.info(
        f"Withdrawal {request.id} moved {previous} -> {status} by admin {admin.id}"
    )
    return request


def set_withdrawal_address(session: Session, user: User, address: str) -> Wallet:
    """Register the payout address; it can be set only once."""

    destination = _validate_address(address)
    wallet = Wallet.get_by_user_id(session, user.id, for_update=True)
    if wallet is None:
        raise NotFound("Wallet not found")
    if wallet.withdrawal_address:
        raise StateError("Withdrawal address already set and cannot be changed")
    wallet.withdrawal_address = destination
    session.flush()
    return wallet


def list_withdrawals(session: Session, user: User) -> list[WithdrawalRequest]:
    return WithdrawalRequest.for_user(session, user.id)


__all__ = [
    "create_withdrawal",
    "list_withdrawals",
    "review_withdrawal",
    "set_withdrawal_address",
    "withdrawal_fee",
]
