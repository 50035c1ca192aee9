"""Runtime overrides of configured defaults, stored as ``AppSetting`` rows."""

from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from .config import Settings
from .errors import ValidationError
from .models import AppSetting
from .tiers import ReferralTier, TierConfig

logger = logging.getLogger(__name__)

REFERRAL_BONUS_KEY = "referralBonus"
BASE_CAP_KEY = "maxTicketsWithoutReferrals"
TIERS_KEY = "referralTiers"


def referral_bonus(session: Session, settings: Settings) -> Decimal:
    raw = AppSetting.get_value(session, REFERRAL_BONUS_KEY)
    if raw is None:
        return settings.referral_bonus
    try:
        return Decimal(raw)
    except InvalidOperation:
        logger.warning(f"Ignoring malformed {REFERRAL_BONUS_KEY} setting {raw!r}")
        return settings.referral_bonus


def set_referral_bonus(session: Session, amount: Decimal) -> Decimal:
    if amount < 0:
        raise ValidationError("Invalid bonus amount")
    AppSetting.put(session, REFERRAL_BONUS_KEY, str(amount))
    return amount


def tier_config(session: Session, settings: Settings) -> TierConfig:
    """Resolve the effective tier configuration.

    Stored values win over configured defaults; a stored tier list that does
    not parse falls back to the defaults.
    """

    base_cap = settings.max_tickets_without_referrals
    raw_cap = AppSetting.get_value(session, BASE_CAP_KEY)
    if raw_cap is not None:
        try:
            base_cap = int(raw_cap)
        except ValueError:
            logger.warning(f"Ignoring malformed {BASE_CAP_KEY} setting {raw_cap!r}")

    default = TierConfig.from_pairs(base_cap, settings.referral_tiers)
    raw_tiers = AppSetting.get_value(session, TIERS_KEY)
    if raw_tiers is None:
        return default
    try:
        tiers = [ReferralTier.from_json(item) for item in json.loads(raw_tiers)]
    except (ValueError, KeyError, TypeError):
        logger.warning(f"Ignoring malformed {TIERS_KEY} setting")
        return default
    return TierConfig(base_cap, tiers)


def set_tier_config(
    session: Session, base_cap: int, tiers: list[ReferralTier]
) -> TierConfig:
    if base_cap < 1:
        raise ValidationError("maxTicketsWithoutReferrals must be at least 1")
    for tier in tiers:
        if tier.referral_threshold < 0 or tier.max_tickets < 1:
            raise ValidationError("Tier thresholds must be >= 0 and caps >= 1")
    config = TierConfig(base_cap, tiers)
    AppSetting.put(session, BASE_CAP_KEY, str(base_cap))
    AppSetting.put(
        session, TIERS_KEY, json.dumps([t.to_json() for t in config.tiers])
    )
    return config
