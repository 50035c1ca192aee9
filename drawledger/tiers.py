"""Referral tiers: how many tickets per draw a user may hold."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional


@dataclass(frozen=True)
class ReferralTier:
    referral_threshold: int
    max_tickets: int

    def to_json(self) -> dict[str, int]:
        return {
            "referralThreshold": self.referral_threshold,
            "maxTickets": self.max_tickets,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "ReferralTier":
        return cls(
            referral_threshold=int(data["referralThreshold"]),
            max_tickets=int(data["maxTickets"]),
        )


@dataclass(frozen=True, init=False)
class TierConfig:
    """Base ticket cap plus the referral tiers that raise it.

    Tiers are kept sorted by threshold so that resolution can walk them in
    order and let the last qualifying tier win.
    """

    base_cap: int
    tiers: tuple[ReferralTier, ...]

    def __init__(self, base_cap: int, tiers: Iterable[ReferralTier]) -> None:
        object.__setattr__(self, "base_cap", base_cap)
        object.__setattr__(
            self,
            "tiers",
            tuple(sorted(tiers, key=lambda t: t.referral_threshold)),
        )

    @classmethod
    def from_pairs(
        cls, base_cap: int, pairs: Iterable[tuple[int, int]]
    ) -> "TierConfig":
        return cls(base_cap, (ReferralTier(t, m) for t, m in pairs))

    def cap_for(self, referral_count: int) -> int:
        """Ticket cap for a user with ``referral_count`` referrals."""

        cap = self.base_cap
        for tier in self.tiers:
            if referral_count >= tier.referral_threshold:
                cap = tier.max_tickets
        return cap

    def next_tier(self, referral_count: int) -> Optional[ReferralTier]:
        """First tier the user has not reached yet, if any."""

        for tier in self.tiers:
            if tier.referral_threshold > referral_count:
                return tier
        return None


__all__ = ["ReferralTier", "TierConfig"]
