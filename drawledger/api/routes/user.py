from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..deps import get_current_user, get_session, get_settings
from ..schemas import (
    ReferralsOut,
    TicketDrawOut,
    TicketLimitsOut,
    TicketOut,
    TransactionOut,
    WalletOut,
    WithdrawalAddressIn,
    WithdrawalIn,
    WithdrawalOut,
)
from ...config import Settings
from ...ledger.referrals import referral_summary
from ...models import Entry, LedgerTransaction, User, WithdrawalRequest
from ...tickets import ticket_limits
from ... import settings_store, withdrawals

router = APIRouter()


def withdrawal_out(request: WithdrawalRequest) -> WithdrawalOut:
    return WithdrawalOut(
        id=request.id,
        amount=request.amount,
        fee=request.fee,
        net_amount=request.net_amount,
        crypto_address=request.crypto_address,
        status=request.status,
        admin_notes=request.admin_notes,
        requested_at=request.requested_at,
        reviewed_at=request.reviewed_at,
    )


@router.post("/withdrawals", response_model=WithdrawalOut)
def create_withdrawal(
    body: WithdrawalIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    request = withdrawals.create_withdrawal(
        session, user, body.amount, settings, address=body.crypto_address
    )
    return withdrawal_out(request)


@router.get("/withdrawals", response_model=list[WithdrawalOut])
def list_withdrawals(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return [withdrawal_out(w) for w in withdrawals.list_withdrawals(session, user)]


@router.put("/withdrawal-address", response_model=WalletOut)
def set_withdrawal_address(
    body: WithdrawalAddressIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    wallet = withdrawals.set_withdrawal_address(session, user, body.address)
    return WalletOut(
        balance=wallet.balance,
        deposit_address=wallet.deposit_address,
        withdrawal_address=wallet.withdrawal_address,
    )


@router.get("/ticket-limits", response_model=TicketLimitsOut)
def get_ticket_limits(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    return TicketLimitsOut.model_validate(ticket_limits(session, user, settings))


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return [
        TransactionOut(
            id=tx.id,
            type=tx.type,
            status=tx.status,
            amount=tx.amount,
            description=tx.description,
            created_at=tx.created_at,
        )
        for tx in LedgerTransaction.for_user(session, user.id)
    ]


@router.get("/tickets", response_model=list[TicketOut])
def list_tickets(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return [
        TicketOut(
            id=entry.id,
            ticket_number=entry.ticket_number,
            purchased_at=entry.created_at,
            draw=TicketDrawOut(
                id=entry.draw.id,
                title=entry.draw.title,
                status=entry.draw.status,
                entry_price=entry.draw.entry_price,
                draw_date=entry.draw.draw_date,
            ),
        )
        for entry in Entry.for_user(session, user.id)
    ]


@router.get("/referrals", response_model=ReferralsOut)
def get_referrals(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    summary = referral_summary(
        session, user, settings_store.referral_bonus(session, settings)
    )
    link = None
    if settings.public_url and user.referral_code:
        link = f"{settings.public_url.rstrip('/')}/auth/signup?ref={user.referral_code}"
    return ReferralsOut.model_validate({**summary, "referralLink": link})
