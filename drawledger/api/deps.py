"""Request-scoped dependencies: settings, store session, caller identity."""

from __future__ import annotations

import logging
from typing import Iterator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings
from ..errors import Unauthorized, UpstreamError
from ..models import User
from ..payments.api import PaymentClient

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_factory(request: Request) -> sessionmaker:
    return request.app.state.session_factory


def get_session(
    factory: sessionmaker = Depends(get_session_factory),
) -> Iterator[Session]:
    """One transaction per request: committed on success, rolled back on error."""
    with factory.begin() as session:
        yield session


def get_payment_client(request: Request, settings: Settings = Depends(get_settings)) -> PaymentClient:
    client = getattr(request.app.state, "payment_client", None)
    if client is not None:
        return client
    try:
        client = PaymentClient(
            api_key=settings.payments_api_key, base_url=settings.payments_base_url
        )
    except ValueError as e:
        raise UpstreamError("Payment provider is not configured") from e
    request.app.state.payment_client = client
    return client


def _resolve_caller(
    session: Session, x_user_id: Optional[str], x_user_role: Optional[str]
) -> User:
    if not x_user_id or not x_user_id.isdigit():
        raise Unauthorized("Unauthorized")
    user = session.get(User, int(x_user_id))
    if user is None:
        raise Unauthorized("Unauthorized")
    if x_user_role and x_user_role.upper() != user.role:
        logger.warning(
            f"Role header {x_user_role!r} does not match stored role of user {user.id}"
        )
        raise Unauthorized("Unauthorized")
    return user


def get_current_user(
    session: Session = Depends(get_session),
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> User:
    """Resolve the caller from the identity headers set by the gateway."""
    return _resolve_caller(session, x_user_id, x_user_role)


def get_caller_id(
    factory: sessionmaker = Depends(get_session_factory),
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> int:
    """Like :func:`get_current_user`, but checked in a session closed on return.

    For handlers that manage their own transactions and must not keep the
    request transaction open.
    """
    with factory() as session:
        return _resolve_caller(session, x_user_id, x_user_role).id


def get_admin_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise Unauthorized("Admin access required")
    return user
