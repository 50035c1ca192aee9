import os
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Mapping

import requests
from dotenv import load_dotenv

from ..errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.nowpayments.io/v1"


@dataclass(frozen=True)
class PaymentIntent:
    """What the provider hands back when a payment is created."""

    payment_id: str
    pay_address: str
    pay_amount: Optional[Decimal]
    pay_currency: Optional[str]
    price_amount: Optional[Decimal] = None


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


class PaymentClient:
    """Thin client for the payment provider's REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 45,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        key = api_key or os.getenv("NOWPAYMENTS_API_KEY")
        if not key:
            raise ValueError("Environment variable 'NOWPAYMENTS_API_KEY' is not set")

        self.api_key = key
        self.base_url = (
            base_url or os.getenv("NOWPAYMENTS_API_BASE_URL") or DEFAULT_BASE_URL
        ).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    # -------- headers --------
    @property
    def auth_headers(self) -> Mapping[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
        }

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            r = self.session.request(
                method=method.upper(),
                url=url,
                headers=self.auth_headers,
                params=params,
                json=json,
                timeout=self.timeout,
            )
            r.raise_for_status()
        except requests.RequestException as e:
            # Never log the API key; the URL and error are enough to diagnose.
            logger.error(f"Payment provider request {method.upper()} {url} failed: {e}")
            raise UpstreamError(f"Payment provider request failed: {e}") from e
        try:
            return r.json() if r.content else None
        except ValueError as e:
            raise UpstreamError("Payment provider returned a non-JSON response") from e

    # -------- API callers --------
    def status(self) -> dict:
        return self._request("GET", "/status")

    def create_payment(
        self,
        amount: Decimal,
        order_id: str,
        callback_url: Optional[str],
        description: str,
        pay_currency: str,
        price_currency: str,
    ) -> PaymentIntent:
        """Create a payment and return its pay address.

        Raises
        ------
        UpstreamError
            If the request fails or the response lacks a payment id or address.
        """
        payload = {
            "price_amount": float(amount),
            "price_currency": price_currency,
            "pay_currency": pay_currency,
            "order_id": order_id,
            "order_description": description,
        }
        if callback_url:
            payload["ipn_callback_url"] = callback_url

        data = self._request("POST", "/payment", json=payload)
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected payment provider response: {data!r}")

        payment_id = data.get("payment_id")
        pay_address = data.get("pay_address")
        if not payment_id or not pay_address:
            raise UpstreamError("Payment provider did not return a payment address")

        logger.info(f"Created provider payment {payment_id} for order {order_id}")
        return PaymentIntent(
            payment_id=str(payment_id),
            pay_address=str(pay_address),
            pay_amount=_optional_decimal(data.get("pay_amount")),
            pay_currency=data.get("pay_currency"),
            price_amount=_optional_decimal(data.get("price_amount")),
        )
