"""Ticket sales: validated, atomic purchase of draw entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from .config import Settings
from .db.utils import as_utc
from .errors import (
    DrawClosed,
    EntryWindowClosed,
    NotFound,
    SoldOut,
    TicketLimitExceeded,
    ValidationError,
)
from .ledger import balance
from .models import Draw, Entry, LedgerTransaction, User, Wallet
from .models.utils import generate_ticket_number
from . import settings_store
from .tiers import TierConfig

logger = logging.getLogger(__name__)

TREASURY_ADDRESS = "APP_TREASURY"


@dataclass
class Purchase:
    entries: list[Entry]
    total_cost: Decimal
    transaction: LedgerTransaction


def ticket_limits(session: Session, user: User, settings: Settings) -> dict[str, Any]:
    """Summarize ``user``'s ticket cap and the tiers that could raise it."""

    config = settings_store.tier_config(session, settings)
    referrals = user.referral_count(session)
    next_tier = config.next_tier(referrals)
    return {
        "referralBonus": settings_store.referral_bonus(session, settings),
        "maxTicketsWithoutReferrals": config.base_cap,
        "userReferrals": referrals,
        "maxTickets": config.cap_for(referrals),
        "tiers": [t.to_json() for t in config.tiers],
        "nextTier": (
            {
                "referralsNeeded": next_tier.referral_threshold - referrals,
                "maxTickets": next_tier.max_tickets,
            }
            if next_tier is not None
            else None
        ),
    }


def _check_tier_cap(
    session: Session, user: User, draw: Draw, quantity: int, config: TierConfig
) -> None:
    referrals = user.referral_count(session)
    cap = config.cap_for(referrals)
    held = Entry.count_for_user(session, draw.id, user.id)
    if held + quantity <= cap:
        return

    details: dict[str, Any] = {
        "referralLimit": True,
        "userTicketsInDraw": held,
        "maxTickets": cap,
        "userReferrals": referrals,
        "nextTier": None,
    }
    next_tier = config.next_tier(referrals)
    if next_tier is not None:
        details["nextTier"] = {
            "referralsNeeded": next_tier.referral_threshold - referrals,
            "maxTickets": next_tier.max_tickets,
        }
    raise TicketLimitExceeded(
        f"You can only purchase up to {cap} tickets per draw", details=details
    )


def enter_draw(
    session: Session,
    user: User,
    draw_id: int,
    quantity: int,
    settings: Settings,
    *,
    now: Optional[datetime] = None,
) -> Purchase:
    """Sell ``quantity`` tickets of ``draw_id`` to ``user``.

    The balance debit, the ENTRY_PURCHASE transaction, the entries and the
    draw's counter are written in the caller's transaction, so they commit
    together or not at all. The draw row stays locked until then, which keeps
    concurrent buyers from overselling ``max_entries``.

    Raises
    ------
    ValidationError
        ``quantity`` < 1, inventory exhausted (:class:`SoldOut`) or the user's
        tier cap reached (:class:`TicketLimitExceeded`).
    NotFound
        Unknown draw or missing wallet.
    StateError
        Entry window closed (:class:`EntryWindowClosed`) or draw already
        settling (:class:`DrawClosed`).
    InsufficientFunds
        Balance below ``quantity`` × entry price.
    """

    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    draw = Draw.get_for_update(session, draw_id)
    if draw is None:
        raise NotFound("Draw not found")

    current = now or datetime.now(timezone.utc)
    if as_utc(current) > as_utc(draw.draw_date):
        raise EntryWindowClosed("Draw entry window has closed")
    if draw.is_closed:
        raise DrawClosed("Draw is not accepting entries at this time")
    if draw.max_entries is not None and draw.current_entries + quantity > draw.max_entries:
        raise SoldOut(
            "Not enough entries available",
            details={"remaining": max(draw.max_entries - draw.current_entries, 0)},
        )

    _check_tier_cap(
        session, user, draw, quantity, settings_store.tier_config(session, settings)
    )

    wallet = Wallet.get_by_user_id(session, user.id)
    if wallet is None:
        raise NotFound("Wallet not found")

    total_cost = Decimal(draw.entry_price) * quantity
    balance.debit(session, wallet.id, total_cost)

    tx = LedgerTransaction(
        user_id=user.id,
        type="ENTRY_PURCHASE",
        status="COMPLETED",
        amount=total_cost,
        from_address=wallet.deposit_address,
        to_address=TREASURY_ADDRESS,
        description=f"Purchased {quantity} entry(s) for {draw.title}",
    )
    session.add(tx)

    entries: list[Entry] = []
    for _ in range(quantity):
        entry = Entry(
            user_id=user.id,
            draw_id=draw.id,
            ticket_number=generate_ticket_number(session),
        )
        session.add(entry)
        entries.append(entry)

    draw.current_entries += quantity
    session.flush()

    logger.info(
        f"User {user.id} bought {quantity} ticket(s) in draw {draw.id} for {total_cost}"
    )
    return Purchase(entries=entries, total_cost=total_cost, transaction=tx)


__all__ = ["Purchase", "enter_draw", "ticket_limits"]
