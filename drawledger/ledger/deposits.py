"""Idempotent reconciliation of payment-provider deposit callbacks.

Provider callbacks for one payment may arrive any number of times and in any
order. The transaction row keyed by the provider payment id remembers how much
of the payment has been credited (``credited_amount``), so every report only
ever credits the difference between what it claims and what was already
applied. A transaction that reached COMPLETED is never touched again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..config import Settings
from ..errors import NotFound, ValidationError
from ..models import LedgerTransaction, User, Wallet
from ..payments.signature import verify_signature
from .. import settings_store
from . import balance
from .referrals import attribute_referral_bonus, completed_deposit_count

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = frozenset({"confirmed", "finished"})
PARTIAL_STATUSES = frozenset({"partially_paid"})
FAILED_STATUSES = frozenset({"failed", "refunded", "expired"})


class PaymentCallback(BaseModel):
    """Body of a provider status callback.

    Only the fields reconciliation needs are declared; everything else the
    provider sends is ignored.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    payment_id: str
    payment_status: str
    pay_address: Optional[str] = None
    pay_currency: Optional[str] = None
    order_id: Optional[str] = None
    outcome_amount: Optional[Decimal] = None
    actually_paid: Optional[Decimal] = None
    pay_amount: Optional[Decimal] = None
    price_amount: Optional[Decimal] = None

    def resolved_amount(self) -> Optional[Decimal]:
        """First amount present, from most to least realized."""

        for value in (
            self.outcome_amount,
            self.actually_paid,
            self.pay_amount,
            self.price_amount,
        ):
            if value is not None:
                return value
        return None

    @property
    def status_class(self) -> Optional[str]:
        status = self.payment_status.strip().lower()
        if status in COMPLETED_STATUSES:
            return "COMPLETED"
        if status in PARTIAL_STATUSES:
            return "PARTIAL"
        if status in FAILED_STATUSES:
            return "FAILED"
        return None


@dataclass
class ReconcileOutcome:
    """What a callback did.

    ``action`` is one of ``"credited"``, ``"partial"``, ``"failed"``,
    ``"ignored"`` (status with no ledger meaning) or ``"noop"`` (payment
    already completed).
    """

    action: str
    credited: Decimal
    transaction: Optional[LedgerTransaction] = None
    referral_bonus: Optional[LedgerTransaction] = None


def parse_callback(raw_body: bytes) -> PaymentCallback:
    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        raise ValidationError("Callback body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise ValidationError("Callback body must be a JSON object")
    try:
        return PaymentCallback.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            "Malformed payment callback",
            details={"fields": [".".join(map(str, err["loc"])) for err in e.errors()]},
        ) from e


def _user_id_from_order(session: Session, order_id: Optional[str]) -> Optional[int]:
    if not order_id or ":" not in order_id:
        return None
    prefix = order_id.split(":", 1)[0]
    if not prefix.isdigit():
        return None
    user = session.get(User, int(prefix))
    return user.id if user is not None else None


def resolve_depositor(
    session: Session,
    callback: PaymentCallback,
    existing: Optional[LedgerTransaction],
) -> int:
    """Find the user a callback belongs to.

    Tries, in order: the owner of the transaction already recorded for the
    payment, the user id encoded in ``order_id`` (``"<userId>:<token>"``), then
    the wallet whose deposit address matches ``pay_address``.
    """

    if existing is not None:
        return existing.user_id

    user_id = _user_id_from_order(session, callback.order_id)
    if user_id is not None:
        return user_id

    if callback.pay_address:
        wallet = Wallet.get_by_deposit_address(session, callback.pay_address)
        if wallet is not None:
            return wallet.user_id

    raise NotFound(
        "Wallet not found for payment",
        details={"paymentId": callback.payment_id},
    )


def reconcile_deposit(
    session: Session,
    callback: PaymentCallback,
    settings: Settings,
) -> ReconcileOutcome:
    """Apply one provider callback to the ledger.

    Must run inside the caller's transaction: the duplicate check, the
    balance credit, the first-deposit count and the referral bonus all commit
    together.

    Raises
    ------
    NotFound
        If no wallet can be matched to a payment seen for the first time.
    """

    status_class = callback.status_class
    if status_class is None:
        logger.debug(
            f"Ignoring payment {callback.payment_id} status {callback.payment_status!r}"
        )
        return ReconcileOutcome(action="ignored", credited=Decimal("0"))

    tx = LedgerTransaction.get_by_payment_id(
        session, callback.payment_id, for_update=True
    )
    if tx is not None and tx.status == "COMPLETED":
        logger.info(f"Payment {callback.payment_id} already completed; no-op")
        return ReconcileOutcome(action="noop", credited=Decimal("0"), transaction=tx)

    user_id = resolve_depositor(session, callback, tx)
    wallet = Wallet.get_by_user_id(session, user_id, for_update=True)
    if wallet is None:
        raise NotFound("Wallet not found", details={"userId": user_id})

    amount = callback.resolved_amount() or Decimal("0")
    if tx is None:
        tx = LedgerTransaction(
            user_id=user_id,
            type="DEPOSIT",
            status="PENDING",
            amount=amount,
            external_payment_id=callback.payment_id,
            to_address=callback.pay_address,
            description="Crypto deposit",
        )
        session.add(tx)
        session.flush()

    already_credited = Decimal(tx.credited_amount or 0)

    if status_class == "FAILED":
        if already_credited > 0:
            # Credited funds stay in the wallet, so the row stays PENDING with
            # its credited_amount rather than contradicting the balance.
            tx.description = (
                f"Crypto deposit; provider reported {callback.payment_status} "
                f"after {already_credited} was credited"
            )
            session.flush()
            logger.warning(
                f"Payment {callback.payment_id} reported {callback.payment_status} "
                f"after a partial credit of {already_credited}; left PENDING"
            )
            return ReconcileOutcome(
                action="failed", credited=Decimal("0"), transaction=tx
            )
        tx.status = "FAILED"
        session.flush()
        logger.info(
            f"Payment {callback.payment_id} reported {callback.payment_status}; marked FAILED"
        )
        return ReconcileOutcome(action="failed", credited=Decimal("0"), transaction=tx)

    # A payment that already credited funds has cleared the floor once.
    if amount < settings.minimum_deposit and already_credited == 0:
        if status_class == "COMPLETED":
            tx.status = "FAILED"
            tx.amount = amount
            session.flush()
            logger.warning(
                f"Payment {callback.payment_id} of {amount} is below the minimum "
                f"deposit {settings.minimum_deposit}; marked FAILED without credit"
            )
            return ReconcileOutcome(
                action="failed", credited=Decimal("0"), transaction=tx
            )
        return ReconcileOutcome(action="partial", credited=Decimal("0"), transaction=tx)

    # Counted before this payment can turn COMPLETED.
    prior_deposits = (
        completed_deposit_count(session, user_id) if status_class == "COMPLETED" else 0
    )

    delta = amount - already_credited
    if delta > 0:
        balance.credit(session, wallet.id, delta)
        tx.credited_amount = amount
        tx.status = "PENDING"
    else:
        delta = Decimal("0")

    if status_class == "PARTIAL":
        session.flush()
        logger.info(
            f"Payment {callback.payment_id} partially paid: credited {delta} "
            f"(total {tx.credited_amount})"
        )
        return ReconcileOutcome(action="partial", credited=delta, transaction=tx)

    tx.amount = max(amount, already_credited)
    tx.status = "COMPLETED"
    session.flush()
    logger.info(
        f"Payment {callback.payment_id} completed: credited {delta} to user {user_id}"
    )

    depositor = session.get(User, user_id)
    bonus_tx = None
    if depositor is not None:
        bonus_tx = attribute_referral_bonus(
            session,
            depositor,
            prior_completed_deposits=prior_deposits,
            bonus=settings_store.referral_bonus(session, settings),
        )
    return ReconcileOutcome(
        action="credited", credited=delta, transaction=tx, referral_bonus=bonus_tx
    )


def handle_deposit_callback(
    session: Session,
    raw_body: bytes,
    signature: Optional[str],
    settings: Settings,
) -> ReconcileOutcome:
    """Verify, parse and reconcile a raw provider callback."""

    verify_signature(raw_body, signature, settings.ipn_secret)
    callback = parse_callback(raw_body)
    return reconcile_deposit(session, callback, settings)


__all__ = [
    "PaymentCallback",
    "ReconcileOutcome",
    "handle_deposit_callback",
    "parse_callback",
    "reconcile_deposit",
    "resolve_depositor",
]
