"""Wallet balance mutation, deposit reconciliation and referral bonuses."""

from .balance import credit, debit
from .deposits import (
    PaymentCallback,
    ReconcileOutcome,
    handle_deposit_callback,
    reconcile_deposit,
)
from .referrals import (
    attribute_referral_bonus,
    completed_deposit_count,
    referral_summary,
)

__all__ = [
    "credit",
    "debit",
    "PaymentCallback",
    "ReconcileOutcome",
    "handle_deposit_callback",
    "reconcile_deposit",
    "attribute_referral_bonus",
    "completed_deposit_count",
    "referral_summary",
]
