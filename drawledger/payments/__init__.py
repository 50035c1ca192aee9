"""Payment provider integration: outbound client and callback signatures."""

from .api import PaymentClient, PaymentIntent
from .signature import SIGNATURE_HEADER, sign_payload, verify_signature

__all__ = [
    "PaymentClient",
    "PaymentIntent",
    "SIGNATURE_HEADER",
    "sign_payload",
    "verify_signature",
]
