"""Settlement engine: selects a draw's winners and pays their prizes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .shuffle import ALGORITHM_NAME, RandBelow, pick_distinct, secure_shuffle
from ..db.utils import as_utc
from ..errors import (
    AlreadyCompleted,
    InsufficientEntries,
    NoEntries,
    NoPrizesConfigured,
    NotCompleted,
    NotFound,
    NotYetDue,
    ValidationError,
)
from ..ledger import balance
from ..models import Draw, Entry, LedgerTransaction, Prize, Wallet, Winner

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    """Value object describing a completed settlement.

    Attributes
    ----------
    draw : Draw
        The settled draw, now ``COMPLETED``.
    winners : list[Winner]
        Winner rows in selection order; ``winners[0]`` holds position 1.
    total_paid : Decimal
        Sum of all prize amounts credited to winners' wallets.
    drawn_at : datetime
        Time the settlement ran.
    """

    draw: Draw
    winners: list[Winner]
    total_paid: Decimal
    drawn_at: datetime


class SettlementEngine:
    """Engine that selects winners for a draw and pays them in one transaction."""

    def __init__(
        self,
        session: Session,
        *,
        randbelow: Optional[RandBelow] = None,
    ) -> None:
        """Create a settlement engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session. The caller owns the transaction; every
            write of a settlement happens inside it.
        randbelow : Optional[RandBelow], default: None
            Replacement for :func:`secrets.randbelow`. Typically omitted; tests
            pass a deterministic source.
        """

        self._session = session
        self._randbelow = randbelow

    def settle(
        self,
        draw_id: int,
        winner_count: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> SettlementResult:
        """Select winners for ``draw_id``, record them and credit their prizes.

        Parameters
        ----------
        draw_id : int
            Draw to settle.
        winner_count : Optional[int], default: None
            Number of winners to select. Defaults to the number of prize
            positions. Winners beyond the configured positions are recorded
            without a prize.
        now : Optional[datetime], default: None
            Settlement time; defaults to the current UTC time.

        Returns
        -------
        SettlementResult
            The completed draw and its winners.

        Notes
        -----
        The settlement performs the following steps:

        1. Lock the draw row and check every precondition before writing.
        2. Move the draw to ``DRAWING`` so concurrent attempts fail fast.
        3. Shuffle all entries with a secure Fisher-Yates shuffle and keep the
           first ticket of each user until ``winner_count`` users are chosen.
        4. Write a :class:`Winner` per selected user and credit nonzero prizes
           with a ``PRIZE_WIN`` transaction.
        5. Move the draw to ``COMPLETED``.

        Nothing is committed here; if any step raises, the caller's transaction
        rolls everything back, including the status change.

        Raises
        ------
        NotFound, AlreadyCompleted, NotYetDue, NoEntries, NoPrizesConfigured,
        InsufficientEntries, ValidationError
            When a precondition fails. No state has changed at that point.
        """

        session = self._session
        draw = Draw.get_for_update(session, draw_id)
        if draw is None:
            raise NotFound("Draw not found")
        if draw.is_closed:
            raise AlreadyCompleted("Draw already completed")

        drawn_at = as_utc(now or datetime.now(timezone.utc))
        if drawn_at < as_utc(draw.draw_date):
            raise NotYetDue(
                "Draw date has not been reached yet",
                details={"drawDate": as_utc(draw.draw_date).isoformat()},
            )

        entries = list(
            session.scalars(
                select(Entry).where(Entry.draw_id == draw.id).order_by(Entry.id.asc())
            ).all()
        )
        if not entries:
            raise NoEntries("No entries in this draw")

        prizes = list(
            session.scalars(
                select(Prize).where(Prize.draw_id == draw.id).order_by(Prize.position.asc())
            ).all()
        )
        if not prizes:
            raise NoPrizesConfigured("No prizes configured for this draw")

        target = len(prizes) if winner_count is None else winner_count
        if target < 1:
            raise ValidationError("Number of winners must be at least 1")
        if target > len(entries):
            raise InsufficientEntries(
                "Not enough entries to select winners",
                details={"entries": len(entries), "winners": target},
            )

        draw.advance_status("DRAWING")
        session.flush()

        if self._randbelow is None:
            shuffled = secure_shuffle(entries)
        else:
            shuffled = secure_shuffle(entries, self._randbelow)
        selected = pick_distinct(shuffled, target, key=lambda e: e.user_id)

        winners: list[Winner] = []
        total_paid = Decimal("0")
        for index, entry in enumerate(selected):
            position = index + 1
            prize_amount = prizes[index].prize_amount if index < len(prizes) else None

            winner = Winner(
                draw_id=draw.id,
                user_id=entry.user_id,
                position=position,
                prize_amount=prize_amount,
                ticket_number=entry.ticket_number,
            )
            session.add(winner)
            winners.append(winner)

            if prize_amount is not None and prize_amount > 0:
                total_paid += self._pay_prize(draw, entry.user_id, position, prize_amount)

        draw.settlement_meta = {
            "algorithm": ALGORITHM_NAME,
            "entryCount": len(entries),
            "participantCount": len({e.user_id for e in entries}),
            "winnerTarget": target,
            "winnerCount": len(winners),
            "totalPaid": str(total_paid),
        }
        draw.completed_at = drawn_at
        draw.advance_status("COMPLETED")
        session.flush()

        logger.info(
            f"Settled draw {draw.id}: {len(winners)} winner(s) from {len(entries)} "
            f"entries, paid {total_paid}"
        )
        return SettlementResult(
            draw=draw, winners=winners, total_paid=total_paid, drawn_at=drawn_at
        )

    def _pay_prize(
        self, draw: Draw, user_id: int, position: int, amount: Decimal
    ) -> Decimal:
        wallet = Wallet.get_by_user_id(self._session, user_id)
        if wallet is None:
            raise NotFound("Wallet not found", details={"userId": user_id})
        balance.credit(self._session, wallet.id, amount)
        self._session.add(
            LedgerTransaction(
                user_id=user_id,
                type="PRIZE_WIN",
                status="COMPLETED",
                amount=amount,
                description=f"Prize from draw: {draw.title} (Position {position})",
            )
        )
        return Decimal(amount)


@dataclass
class DrawResults:
    """Settled outcome of a draw as read back after completion."""

    draw: Draw
    winners: list[Winner]
    participant_count: int


def draw_results(session: Session, draw_id: int) -> DrawResults:
    """Winners of a completed draw, ordered by position.

    ``participant_count`` is the number of tickets sold.

    Raises
    ------
    NotFound
        If the draw does not exist.
    NotCompleted
        If the draw has not been settled yet.
    """

    draw = session.get(Draw, draw_id)
    if draw is None:
        raise NotFound("Draw not found")
    if draw.status != "COMPLETED":
        raise NotCompleted(
            "Draw has not been completed yet", details={"status": draw.status}
        )
    entry_count = session.scalar(
        select(func.count(Entry.id)).where(Entry.draw_id == draw.id)
    )
    return DrawResults(
        draw=draw, winners=list(draw.winners), participant_count=entry_count or 0
    )


__all__ = ["DrawResults", "SettlementEngine", "SettlementResult", "draw_results"]
