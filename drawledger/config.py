"""Process configuration loaded from the environment (and ``.env``)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

from .db.engine import DEFAULT_SQLITE_URL, ROOT_DIR
from .db.utils import resolve_sqlite_url

DEFAULT_PAYMENTS_BASE_URL = "https://api.nowpayments.io/v1"

# (referralThreshold, maxTickets)
DEFAULT_REFERRAL_TIERS: tuple[tuple[int, int], ...] = (
    (10, 25),
    (25, 50),
    (50, 75),
    (75, 150),
    (150, 300),
)


def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_SQLITE_URL
    payments_api_key: Optional[str] = None
    payments_base_url: str = DEFAULT_PAYMENTS_BASE_URL
    ipn_secret: Optional[str] = None
    deposit_callback_url: Optional[str] = None
    pay_currency: str = "usdtp"
    price_currency: str = "usd"
    minimum_deposit: Decimal = Decimal("3")
    minimum_withdrawal: Decimal = Decimal("10")
    withdrawal_fee_rate: Decimal = Decimal("0.18")
    referral_bonus: Decimal = Decimal("0.25")
    max_tickets_without_referrals: int = 10
    referral_tiers: tuple[tuple[int, int], ...] = field(
        default=DEFAULT_REFERRAL_TIERS
    )
    public_url: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, reading ``.env`` first."""
        load_dotenv()
        db_url = os.getenv("DB_URL")
        return cls(
            database_url=(
                resolve_sqlite_url(db_url, ROOT_DIR) if db_url else DEFAULT_SQLITE_URL
            ),
            payments_api_key=os.getenv("NOWPAYMENTS_API_KEY"),
            payments_base_url=os.getenv(
                "NOWPAYMENTS_API_BASE_URL", DEFAULT_PAYMENTS_BASE_URL
            ),
            ipn_secret=os.getenv("NOWPAYMENTS_IPN_SECRET"),
            deposit_callback_url=os.getenv("DEPOSIT_CALLBACK_URL"),
            pay_currency=os.getenv("NOWPAYMENTS_PAY_CURRENCY", "usdtp").lower(),
            price_currency=os.getenv("NOWPAYMENTS_PRICE_CURRENCY", "usd").lower(),
            minimum_deposit=_decimal_env("MINIMUM_DEPOSIT", "3"),
            minimum_withdrawal=_decimal_env("MINIMUM_WITHDRAWAL", "10"),
            withdrawal_fee_rate=_decimal_env("WITHDRAWAL_FEE_RATE", "0.18"),
            referral_bonus=_decimal_env("REFERRAL_BONUS", "0.25"),
            max_tickets_without_referrals=int(
                os.getenv("MAX_TICKETS_WITHOUT_REFERRALS", "10")
            ),
            public_url=os.getenv("PUBLIC_URL"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
