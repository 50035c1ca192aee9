"""Error taxonomy shared by the ledger, draw and withdrawal services.

Every error carries a stable machine readable ``code`` and the HTTP status
the API boundary answers with. ``details`` holds extra, JSON-serializable
context that callers can use (e.g. the next referral tier on a ticket-limit
violation).
"""

from __future__ import annotations

from typing import Any, Optional


class DrawLedgerError(Exception):
    """Base class for all expected domain failures."""

    code: str = "error"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.details}


class ValidationError(DrawLedgerError):
    code = "validation_error"
    status_code = 400


class Unauthorized(DrawLedgerError):
    code = "unauthorized"
    status_code = 401


class NotFound(DrawLedgerError):
    code = "not_found"
    status_code = 404


class StateError(DrawLedgerError):
    """Operation is not valid for the entity's current state."""

    code = "invalid_state"
    status_code = 400


class InsufficientFunds(DrawLedgerError):
    code = "insufficient_funds"
    status_code = 400


class UpstreamError(DrawLedgerError):
    """The payment provider failed or returned an unusable response."""

    code = "upstream_error"
    status_code = 502


class SignatureError(DrawLedgerError):
    code = "invalid_signature"
    status_code = 401


# -------- ticket purchase --------
class EntryWindowClosed(StateError):
    code = "entry_window_closed"


class DrawClosed(StateError):
    code = "draw_closed"


class SoldOut(ValidationError):
    code = "sold_out"


class TicketLimitExceeded(ValidationError):
    code = "ticket_limit_exceeded"


# -------- settlement --------
class AlreadyCompleted(StateError):
    code = "already_completed"


class NotYetDue(StateError):
    code = "not_yet_due"


class NoEntries(ValidationError):
    code = "no_entries"


class NoPrizesConfigured(ValidationError):
    code = "no_prizes_configured"


class InsufficientEntries(ValidationError):
    code = "insufficient_entries"


class NotCompleted(StateError):
    code = "not_completed"


__all__ = [
    "DrawLedgerError",
    "ValidationError",
    "Unauthorized",
    "NotFound",
    "StateError",
    "InsufficientFunds",
    "UpstreamError",
    "SignatureError",
    "EntryWindowClosed",
    "DrawClosed",
    "SoldOut",
    "TicketLimitExceeded",
    "AlreadyCompleted",
    "NotYetDue",
    "NoEntries",
    "NoPrizesConfigured",
    "InsufficientEntries",
    "NotCompleted",
]
