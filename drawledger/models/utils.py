"""Random identifiers for tickets and referral codes."""

from __future__ import annotations

import secrets
import string
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .draw import Entry
from .user import User

BASE62_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase


def random_base62(length: int) -> str:
    return "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))


def _ticket_taken(session: Session, candidate: str) -> bool:
    # Entries added in this session but not flushed yet count as taken too.
    if any(
        isinstance(obj, Entry) and obj.ticket_number == candidate for obj in session.new
    ):
        return True
    return (
        session.scalar(select(Entry.id).where(Entry.ticket_number == candidate))
        is not None
    )


def generate_ticket_number(
    session: Optional[Session] = None,
    length: int = 10,
    max_attempts: int = 32,
) -> str:
    """Return a random base62 ticket number.

    With a session, candidates already used by an entry (stored or pending)
    are rejected and redrawn.

    Raises
    ------
    RuntimeError
        If no free number was found within ``max_attempts`` draws.
    """

    for _ in range(max_attempts):
        candidate = random_base62(length)
        if session is None or not _ticket_taken(session, candidate):
            return candidate
    raise RuntimeError(
        "Unable to generate a unique ticket number after multiple attempts"
    )


def generate_referral_code(session: Session, length: int = 8) -> str:
    """Return an upper-case referral code not yet used by any user."""

    while True:
        candidate = random_base62(length).upper()
        taken = session.scalar(select(User.id).where(User.referral_code == candidate))
        if taken is None:
            return candidate
