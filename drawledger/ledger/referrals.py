"""One-time referral bonus paid when a referred user first deposits."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models import LedgerTransaction, User, Wallet
from . import balance

logger = logging.getLogger(__name__)


def completed_deposit_count(session: Session, user_id: int) -> int:
    """Completed provider deposits of ``user_id``.

    Refunds of rejected withdrawals are DEPOSIT rows too, but they are linked
    to their withdrawal request and do not count.
    """

    return session.scalar(
        select(func.count(LedgerTransaction.id)).where(
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.type == "DEPOSIT",
            LedgerTransaction.status == "COMPLETED",
            LedgerTransaction.withdrawal_id.is_(None),
        )
    ) or 0


def bonus_already_paid(session: Session, referred_user_id: int) -> bool:
    return (
        session.scalar(
            select(LedgerTransaction.id).where(
                LedgerTransaction.type == "REFERRAL_BONUS",
                LedgerTransaction.referred_user_id == referred_user_id,
            )
        )
        is not None
    )


def attribute_referral_bonus(
    session: Session,
    depositor: User,
    *,
    prior_completed_deposits: int,
    bonus: Decimal,
) -> Optional[LedgerTransaction]:
    """Credit ``depositor``'s referrer once, on the depositor's first deposit.

    ``prior_completed_deposits`` must be counted in the same transaction
    before the current deposit was marked completed.

    Returns the REFERRAL_BONUS transaction, or ``None`` when no bonus is due.
    """

    if depositor.referred_by_id is None or prior_completed_deposits != 0:
        return None
    if bonus <= 0:
        return None
    if bonus_already_paid(session, depositor.id):
        logger.info(f"Referral bonus for user {depositor.id} already paid; skipping")
        return None

    referrer_wallet = Wallet.get_by_user_id(session, depositor.referred_by_id)
    if referrer_wallet is None:
        logger.warning(
            f"Referrer {depositor.referred_by_id} of user {depositor.id} has no wallet"
        )
        return None

    balance.credit(session, referrer_wallet.id, bonus)
    tx = LedgerTransaction(
        user_id=depositor.referred_by_id,
        type="REFERRAL_BONUS",
        status="COMPLETED",
        amount=bonus,
        referred_user_id=depositor.id,
        description=f"Referral bonus for user {depositor.id}",
    )
    session.add(tx)
    session.flush()
    logger.info(
        f"Paid referral bonus {bonus} to user {depositor.referred_by_id} "
        f"for user {depositor.id}"
    )
    return tx


def referral_summary(session: Session, user: User, bonus: Decimal) -> dict:
    """Referral code, referred users and bonus totals of ``user``.

    ``bonus`` is the amount currently paid per referral.
    """

    total_bonus = session.scalar(
        select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
            LedgerTransaction.user_id == user.id,
            LedgerTransaction.type == "REFERRAL_BONUS",
        )
    )
    referred = user.referrals(session)
    return {
        "referralCode": user.referral_code,
        "referralCount": len(referred),
        "totalBonus": Decimal(total_bonus or 0),
        "referralBonus": bonus,
        "referrals": [
            {"id": u.id, "email": u.email, "createdAt": u.created_at} for u in referred
        ],
    }
