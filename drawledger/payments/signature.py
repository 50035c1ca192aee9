"""Verification of signed payment-provider callbacks."""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional

from ..errors import SignatureError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-nowpayments-sig"


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of ``raw_body`` keyed with ``secret``."""

    return hmac.new(secret.strip().encode(), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """Check ``signature`` against the exact bytes that were received.

    Raises
    ------
    SignatureError
        If the header or the secret is missing, or the digest does not match.
    """

    if not secret:
        logger.error("Callback secret is not configured; rejecting callback")
        raise SignatureError("Callback signature cannot be verified")
    if not signature:
        logger.warning("Rejected callback without signature header")
        raise SignatureError("Missing callback signature")

    expected = sign_payload(raw_body, secret)
    if not hmac.compare_digest(expected.encode(), signature.strip().lower().encode()):
        logger.warning("Rejected callback with invalid signature")
        raise SignatureError("Invalid callback signature")


__all__ = ["SIGNATURE_HEADER", "sign_payload", "verify_signature"]
