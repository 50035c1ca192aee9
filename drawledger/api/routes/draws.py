from typing import Iterable

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..deps import get_current_user, get_session, get_settings
from ..schemas import (
    DrawHistoryOut,
    DrawOut,
    DrawWinnersOut,
    EnterDrawIn,
    EnterDrawOut,
    EntryOut,
    PrizeOut,
    WinnerOut,
)
from ...config import Settings
from ...errors import NotFound
from ...models import Draw, User, Winner
from ...prize_draw import draw_results
from ...tickets import enter_draw

router = APIRouter()


def draw_out(draw: Draw) -> DrawOut:
    return DrawOut(
        id=draw.id,
        title=draw.title,
        status=draw.status,
        entry_price=draw.entry_price,
        max_entries=draw.max_entries,
        current_entries=draw.current_entries,
        draw_date=draw.draw_date,
        prizes=[
            PrizeOut(position=p.position, prize_amount=p.prize_amount)
            for p in draw.prizes
        ],
    )


def winners_out(winners: Iterable[Winner]) -> list[WinnerOut]:
    return [
        WinnerOut(
            user_id=w.user_id,
            position=w.position,
            prize_amount=w.prize_amount,
            ticket_number=w.ticket_number,
        )
        for w in winners
    ]


@router.get("", response_model=list[DrawOut])
def list_draws(session: Session = Depends(get_session)):
    draws = session.scalars(select(Draw).order_by(Draw.draw_date.asc())).all()
    return [draw_out(d) for d in draws]


@router.get("/history", response_model=list[DrawHistoryOut])
def draw_history(session: Session = Depends(get_session)):
    """The 20 most recent settled draws with their winners."""
    return [
        DrawHistoryOut(
            **draw_out(d).model_dump(),
            completed_at=d.completed_at,
            winners=winners_out(d.winners),
        )
        for d in Draw.completed(session)
    ]


@router.get("/{draw_id}", response_model=DrawOut)
def get_draw(draw_id: int, session: Session = Depends(get_session)):
    draw = session.get(Draw, draw_id)
    if draw is None:
        raise NotFound("Draw not found")
    return draw_out(draw)


@router.get("/{draw_id}/winners", response_model=DrawWinnersOut)
def get_winners(draw_id: int, session: Session = Depends(get_session)):
    results = draw_results(session, draw_id)
    return DrawWinnersOut(
        draw_id=results.draw.id,
        draw_title=results.draw.title,
        total_participants=results.participant_count,
        winners=winners_out(results.winners),
        total_winners=len(results.winners),
        drawn_at=results.draw.completed_at,
    )


@router.post("/{draw_id}/enter", response_model=EnterDrawOut)
def enter(
    draw_id: int,
    body: EnterDrawIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    purchase = enter_draw(session, user, draw_id, body.quantity, settings)
    return EnterDrawOut(
        entries=[
            EntryOut(id=e.id, ticket_number=e.ticket_number, draw_id=e.draw_id)
            for e in purchase.entries
        ],
        total_cost=purchase.total_cost,
    )
