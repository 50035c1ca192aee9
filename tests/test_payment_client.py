import json
import os
import unittest
from decimal import Decimal
from unittest.mock import patch

import requests

from drawledger.errors import SignatureError, UpstreamError
from drawledger.payments.api import PaymentClient
from drawledger.payments.signature import sign_payload, verify_signature


class DummyResponse:
    def __init__(self, json_data=None, content: bytes = b"", status_error=None):
        self._json = json_data
        if json_data is not None and not content:
            content = json.dumps(json_data).encode()
        self.content = content
        self.status_error = status_error

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json

    def raise_for_status(self):
        if self.status_error is not None:
            raise self.status_error


class DummySession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers,
                "params": params,
                "json": json,
                "timeout": timeout,
            }
        )
        if self.error is not None:
            raise self.error
        return self.response


def make_client(session: DummySession) -> PaymentClient:
    return PaymentClient(
        api_key="key-123", base_url="https://pay.example.com/v1/", session=session
    )


class TestPaymentClient(unittest.TestCase):
    @patch("drawledger.payments.api.load_dotenv")
    def test_requires_api_key(self, mock_load_dotenv):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ValueError):
                PaymentClient()

    def test_create_payment_posts_order(self):
        session = DummySession(
            DummyResponse(
                json_data={
                    "payment_id": 5077125051,
                    "pay_address": "TAddr1234567890",
                    "pay_amount": 12.3456,
                    "pay_currency": "usdtp",
                    "price_amount": 12,
                }
            )
        )
        client = make_client(session)

        intent = client.create_payment(
            amount=Decimal("12"),
            order_id="7:abc",
            callback_url="https://app.example.com/api/wallet/deposit",
            description="Wallet deposit",
            pay_currency="usdtp",
            price_currency="usd",
        )

        self.assertEqual(intent.payment_id, "5077125051")
        self.assertEqual(intent.pay_address, "TAddr1234567890")
        self.assertEqual(intent.pay_amount, Decimal("12.3456"))
        call = session.calls[0]
        self.assertEqual(call["method"], "POST")
        self.assertEqual(call["url"], "https://pay.example.com/v1/payment")
        self.assertEqual(call["headers"]["x-api-key"], "key-123")
        self.assertEqual(call["json"]["order_id"], "7:abc")
        self.assertEqual(
            call["json"]["ipn_callback_url"], "https://app.example.com/api/wallet/deposit"
        )

    def test_missing_address_is_upstream_error(self):
        client = make_client(DummySession(DummyResponse(json_data={"payment_id": "1"})))
        with self.assertRaises(UpstreamError):
            client.create_payment(Decimal("10"), "1:x", None, "d", "usdtp", "usd")

    def test_http_error_is_upstream_error(self):
        response = DummyResponse(
            json_data={"message": "bad"},
            status_error=requests.HTTPError("500 Server Error"),
        )
        client = make_client(DummySession(response))
        with self.assertRaises(UpstreamError):
            client.create_payment(Decimal("10"), "1:x", None, "d", "usdtp", "usd")

    def test_network_error_is_upstream_error(self):
        client = make_client(DummySession(error=requests.ConnectionError("unreachable")))
        with self.assertRaises(UpstreamError):
            client.status()

    def test_non_json_response_is_upstream_error(self):
        client = make_client(DummySession(DummyResponse(content=b"<html>")))
        with self.assertRaises(UpstreamError):
            client.status()


class TestCallbackSignature(unittest.TestCase):
    def test_valid_signature_accepted(self):
        raw = b'{"payment_id":"1","payment_status":"finished"}'
        verify_signature(raw, sign_payload(raw, "secret"), "secret")
        verify_signature(raw, sign_payload(raw, "secret").upper(), "secret")

    def test_missing_secret_rejected(self):
        raw = b"{}"
        with self.assertRaises(SignatureError):
            verify_signature(raw, sign_payload(raw, "secret"), None)

    def test_non_ascii_signature_rejected(self):
        with self.assertRaises(SignatureError):
            verify_signature(b"{}", "sigé", "secret")


if __name__ == "__main__":
    unittest.main()
