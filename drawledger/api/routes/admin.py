import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..deps import get_admin_user, get_session, get_settings
from ..schemas import (
    AdminWithdrawalOut,
    CreateDrawIn,
    DrawOut,
    ExecuteDrawIn,
    ExecuteDrawOut,
    GlobalSettingsModel,
    ReferralSettingModel,
    ReviewWithdrawalIn,
    ReviewWithdrawalOut,
    TierModel,
    WithdrawalOwnerOut,
)
from .draws import draw_out, winners_out
from .user import withdrawal_out
from ...config import Settings
from ...errors import ValidationError
from ...models import User, WithdrawalRequest
from ...models.withdrawal import WITHDRAWAL_STATUSES
from ...tiers import ReferralTier
from ... import settings_store, workflows

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/draws", response_model=DrawOut)
def create_draw(
    body: CreateDrawIn,
    admin: User = Depends(get_admin_user),
    session: Session = Depends(get_session),
):
    draw = workflows.create_draw(
        session,
        title=body.title,
        entry_price=body.entry_price,
        draw_date=body.draw_date,
        prizes=[p.prize_amount for p in body.prizes],
        max_entries=body.max_entries,
        description=body.description,
    )
    logger.info(f"Admin {admin.id} created draw {draw.id}")
    return draw_out(draw)


@router.post("/draws/execute", response_model=ExecuteDrawOut)
def execute_draw(
    body: ExecuteDrawIn,
    admin: User = Depends(get_admin_user),
    session: Session = Depends(get_session),
):
    result = workflows.execute_draw(session, body.draw_id, body.number_of_winners)
    return ExecuteDrawOut(
        winners=winners_out(result.winners),
        total_winners=len(result.winners),
        total_paid=result.total_paid,
        drawn_at=result.drawn_at,
    )


@router.get("/withdrawals", response_model=list[AdminWithdrawalOut])
def list_withdrawal_requests(
    status: Optional[str] = None,
    admin: User = Depends(get_admin_user),
    session: Session = Depends(get_session),
):
    """Review queue of every user's withdrawal requests, newest first."""
    if status is not None and status not in WITHDRAWAL_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    return [
        AdminWithdrawalOut(
            **withdrawal_out(w).model_dump(),
            user=WithdrawalOwnerOut(id=w.user.id, email=w.user.email),
        )
        for w in WithdrawalRequest.review_queue(session, status)
    ]


@router.post("/withdrawals/update", response_model=ReviewWithdrawalOut)
def review_withdrawal(
    body: ReviewWithdrawalIn,
    admin: User = Depends(get_admin_user),
    session: Session = Depends(get_session),
):
    request = workflows.review_withdrawal(
        session, admin, body.withdrawal_id, body.status, body.admin_notes
    )
    return ReviewWithdrawalOut(
        id=request.id, status=request.status, reviewed_at=request.reviewed_at
    )


@router.get("/settings/referral", response_model=ReferralSettingModel)
def get_referral_setting(
    admin: User = Depends(get_admin_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    return ReferralSettingModel(
        referral_bonus=settings_store.referral_bonus(session, settings)
    )


@router.put("/settings/referral", response_model=ReferralSettingModel)
def put_referral_setting(
    body: ReferralSettingModel,
    admin: User = Depends(get_admin_user),
    session: Session = Depends(get_session),
):
    amount = settings_store.set_referral_bonus(session, body.referral_bonus)
    logger.info(f"Admin {admin.id} set referral bonus to {amount}")
    return ReferralSettingModel(referral_bonus=amount)


def _global_out(config) -> GlobalSettingsModel:
    return GlobalSettingsModel(
        max_tickets_without_referrals=config.base_cap,
        referral_tiers=[
            TierModel(referral_threshold=t.referral_threshold, max_tickets=t.max_tickets)
            for t in config.tiers
        ],
    )


@router.get("/settings/global", response_model=GlobalSettingsModel)
def get_global_settings(
    admin: User = Depends(get_admin_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    return _global_out(settings_store.tier_config(session, settings))


@router.put("/settings/global", response_model=GlobalSettingsModel)
def put_global_settings(
    body: GlobalSettingsModel,
    admin: User = Depends(get_admin_user),
    session: Session = Depends(get_session),
):
    config = settings_store.set_tier_config(
        session,
        body.max_tickets_without_referrals,
        [ReferralTier(t.referral_threshold, t.max_tickets) for t in body.referral_tiers],
    )
    logger.info(f"Admin {admin.id} updated ticket tiers")
    return _global_out(config)
