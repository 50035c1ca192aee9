"""Request and response bodies of the HTTP API.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -------- wallet --------
class DepositIntentIn(ApiModel):
    amount: Decimal = Field(gt=0)


class DepositIntentOut(ApiModel):
    payment_id: str
    pay_address: str
    pay_amount: Optional[Decimal] = None
    pay_currency: Optional[str] = None


class WalletOut(ApiModel):
    balance: Decimal
    deposit_address: Optional[str] = None
    withdrawal_address: Optional[str] = None


class WebhookAck(ApiModel):
    success: bool = True
    action: str
    credited: Decimal


# -------- draws --------
class EnterDrawIn(ApiModel):
    quantity: int = 1


class EntryOut(ApiModel):
    id: int
    ticket_number: str
    draw_id: int


class EnterDrawOut(ApiModel):
    entries: list[EntryOut]
    total_cost: Decimal


class PrizeIn(ApiModel):
    prize_amount: Decimal = Field(ge=0)


class CreateDrawIn(ApiModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    entry_price: Decimal = Field(gt=0)
    max_entries: Optional[int] = Field(default=None, ge=1)
    draw_date: datetime
    prizes: list[PrizeIn] = Field(default_factory=list)


class PrizeOut(ApiModel):
    position: int
    prize_amount: Decimal


class DrawOut(ApiModel):
    id: int
    title: str
    status: str
    entry_price: Decimal
    max_entries: Optional[int] = None
    current_entries: int
    draw_date: datetime
    prizes: list[PrizeOut]


class ExecuteDrawIn(ApiModel):
    draw_id: int
    number_of_winners: Optional[int] = None


class WinnerOut(ApiModel):
    user_id: int
    position: int
    prize_amount: Optional[Decimal] = None
    ticket_number: str


class ExecuteDrawOut(ApiModel):
    winners: list[WinnerOut]
    total_winners: int
    total_paid: Decimal
    drawn_at: datetime


class DrawWinnersOut(ApiModel):
    draw_id: int
    draw_title: str
    total_participants: int
    winners: list[WinnerOut]
    total_winners: int
    drawn_at: Optional[datetime] = None


class DrawHistoryOut(DrawOut):
    completed_at: Optional[datetime] = None
    winners: list[WinnerOut]


# -------- user --------
class WithdrawalIn(ApiModel):
    amount: Decimal = Field(gt=0)
    crypto_address: Optional[str] = None


class WithdrawalOut(ApiModel):
    id: int
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    crypto_address: str
    status: str
    admin_notes: Optional[str] = None
    requested_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None


class WithdrawalAddressIn(ApiModel):
    address: str


class TransactionOut(ApiModel):
    id: int
    type: str
    status: str
    amount: Decimal
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class TierModel(ApiModel):
    referral_threshold: int = Field(ge=0)
    max_tickets: int = Field(ge=1)


class NextTierOut(ApiModel):
    referrals_needed: int
    max_tickets: int


class TicketLimitsOut(ApiModel):
    referral_bonus: Decimal
    max_tickets_without_referrals: int
    user_referrals: int
    max_tickets: int
    tiers: list[TierModel]
    next_tier: Optional[NextTierOut] = None


class TicketDrawOut(ApiModel):
    id: int
    title: str
    status: str
    entry_price: Decimal
    draw_date: datetime


class TicketOut(ApiModel):
    id: int
    ticket_number: str
    purchased_at: Optional[datetime] = None
    draw: TicketDrawOut


class ReferredUserOut(ApiModel):
    id: int
    email: str
    created_at: Optional[datetime] = None


class ReferralsOut(ApiModel):
    referral_code: Optional[str] = None
    referral_count: int
    total_bonus: Decimal
    referral_bonus: Decimal
    referrals: list[ReferredUserOut]
    referral_link: Optional[str] = None


# -------- admin --------
class ReviewWithdrawalIn(ApiModel):
    withdrawal_id: int
    status: str
    admin_notes: Optional[str] = None


class ReviewWithdrawalOut(ApiModel):
    id: int
    status: str
    reviewed_at: Optional[datetime] = None


class ReferralSettingModel(ApiModel):
    referral_bonus: Decimal = Field(ge=0)


class GlobalSettingsModel(ApiModel):
    max_tickets_without_referrals: int = Field(ge=1)
    referral_tiers: list[TierModel]


class WithdrawalOwnerOut(ApiModel):
    id: int
    email: str


class AdminWithdrawalOut(WithdrawalOut):
    user: WithdrawalOwnerOut
