import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from ..deps import (
    get_caller_id,
    get_current_user,
    get_payment_client,
    get_session,
    get_session_factory,
    get_settings,
)
from ..schemas import DepositIntentIn, DepositIntentOut, WalletOut, WebhookAck
from ...config import Settings
from ...errors import NotFound
from ...ledger.deposits import ReconcileOutcome, handle_deposit_callback
from ...models import User, Wallet
from ...payments.api import PaymentClient
from ... import workflows

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=WalletOut)
def get_wallet(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    wallet = Wallet.get_by_user_id(session, user.id)
    if wallet is None:
        raise NotFound("Wallet not found")
    return WalletOut(
        balance=wallet.balance,
        deposit_address=wallet.deposit_address,
        withdrawal_address=wallet.withdrawal_address,
    )


@router.post("/deposit/intent", response_model=DepositIntentOut)
def create_deposit_intent(
    body: DepositIntentIn,
    user_id: int = Depends(get_caller_id),
    factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    client: PaymentClient = Depends(get_payment_client),
):
    """Create a provider payment and return where to send the funds.

    No request transaction here: the workflow keeps the provider call outside
    its own store transactions.
    """
    intent = workflows.create_deposit_intent(factory, user_id, body.amount, client, settings)
    return DepositIntentOut(
        payment_id=intent.payment_id,
        pay_address=intent.pay_address,
        pay_amount=intent.pay_amount,
        pay_currency=intent.pay_currency,
    )


@router.post("/deposit", response_model=WebhookAck)
async def deposit_webhook(
    request: Request,
    factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    x_nowpayments_sig: Optional[str] = Header(None),
):
    """Payment provider status callback.

    The signature covers the exact bytes received, so the body is read raw
    and only parsed after verification.
    """
    raw_body = await request.body()

    def _reconcile() -> ReconcileOutcome:
        with factory.begin() as session:
            return handle_deposit_callback(session, raw_body, x_nowpayments_sig, settings)

    outcome = await run_in_threadpool(_reconcile)
    return WebhookAck(action=outcome.action, credited=outcome.credited)
