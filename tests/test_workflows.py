import threading
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from drawledger.errors import NotFound, StateError, UpstreamError, ValidationError
from drawledger.ledger import balance
from drawledger.models import Draw, LedgerTransaction, User, Wallet
from drawledger.payments.api import PaymentIntent
from drawledger.workflows import (
    activate_draw,
    create_deposit_intent,
    create_draw,
    register_user,
)

from ledger_fixtures import FileLedgerTestCase, LedgerTestCase


class DummyClient:
    def __init__(self, intent=None, error=None):
        self.intent = intent
        self.error = error
        self.calls: list[dict] = []

    def create_payment(self, **kwargs) -> PaymentIntent:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.intent


class RegisterUserWorkflowTestCase(LedgerTestCase):
    def test_register_user_creates_wallet_and_code(self):
        with self.Session.begin() as session:
            user = register_user(session, "new@example.com")
            self.assertIsNotNone(user.id)
            self.assertEqual(user.wallet.balance, Decimal("0"))
            self.assertEqual(len(user.referral_code), 8)
            self.assertFalse(user.is_admin)

    def test_register_with_referral_code(self):
        referrer_id = self.make_user("ref@example.com")
        referred_id = self.make_user("new@example.com", referrer_id=referrer_id)

        with self.Session() as session:
            referrer = session.get(User, referrer_id)
            self.assertEqual(session.get(User, referred_id).referred_by_id, referrer_id)
            self.assertEqual(referrer.referral_count(session), 1)

    def test_register_rejects_unknown_code_and_duplicate_email(self):
        self.make_user("taken@example.com")
        with self.Session.begin() as session:
            with self.assertRaises(ValidationError):
                register_user(session, "taken@example.com")
            with self.assertRaises(ValidationError):
                register_user(session, "x@example.com", referral_code="NOPE0000")


class DepositIntentWorkflowTestCase(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.user_id = self.make_user("payer@example.com")

    def test_intent_records_pending_deposit(self):
        client = DummyClient(
            PaymentIntent(
                payment_id="np-42",
                pay_address="TDeposit123456",
                pay_amount=Decimal("20.02"),
                pay_currency="usdtp",
            )
        )

        intent = create_deposit_intent(
            self.Session, self.user_id, Decimal("20"), client, self.settings
        )

        self.assertEqual(intent.payment_id, "np-42")
        call = client.calls[0]
        self.assertTrue(call["order_id"].startswith(f"{self.user_id}:"))
        self.assertEqual(call["pay_currency"], "usdtp")
        self.assertEqual(call["price_currency"], "usd")
        with self.Session() as session:
            tx = LedgerTransaction.get_by_payment_id(session, "np-42")
            self.assertEqual(tx.status, "PENDING")
            self.assertEqual(tx.amount, Decimal("20"))
            wallet = Wallet.get_by_user_id(session, self.user_id)
            self.assertEqual(wallet.deposit_address, "TDeposit123456")
            self.assertEqual(wallet.balance, Decimal("0"))

    def test_intent_below_minimum(self):
        client = DummyClient()
        with self.assertRaises(ValidationError):
            create_deposit_intent(
                self.Session, self.user_id, Decimal("2.99"), client, self.settings
            )
        self.assertEqual(client.calls, [])

    def test_intent_unknown_user(self):
        client = DummyClient()
        with self.assertRaises(NotFound):
            create_deposit_intent(self.Session, 9999, Decimal("10"), client, self.settings)
        self.assertEqual(client.calls, [])

    def test_intent_provider_failure_writes_nothing(self):
        client = DummyClient(error=UpstreamError("provider down"))
        with self.assertRaises(UpstreamError):
            create_deposit_intent(
                self.Session, self.user_id, Decimal("10"), client, self.settings
            )

        with self.Session() as session:
            self.assertEqual(LedgerTransaction.for_user(session, self.user_id), [])
            self.assertIsNone(Wallet.get_by_user_id(session, self.user_id).deposit_address)


class SlowProviderTestCase(FileLedgerTestCase):
    """Other writers keep working while the provider call is in flight."""

    def test_store_is_writable_during_provider_call(self):
        payer_id = self.make_user("payer@example.com")
        other_id = self.make_user("other@example.com")
        errors: list[Exception] = []

        def credit_other_wallet():
            try:
                with self.Session.begin() as session:
                    wallet = Wallet.get_by_user_id(session, other_id)
                    balance.credit(session, wallet.id, Decimal("7"))
            except Exception as e:
                errors.append(e)

        class WritingClient(DummyClient):
            def create_payment(self, **kwargs):
                writer = threading.Thread(target=credit_other_wallet)
                writer.start()
                writer.join()
                return super().create_payment(**kwargs)

        client = WritingClient(
            PaymentIntent(
                payment_id="np-slow",
                pay_address="TSlowDeposit1",
                pay_amount=Decimal("10"),
                pay_currency="usdtp",
            )
        )
        create_deposit_intent(self.Session, payer_id, Decimal("10"), client, self.settings)

        self.assertEqual(errors, [])
        self.assertEqual(self.balance_of(other_id), Decimal("7"))
        with self.Session() as session:
            tx = LedgerTransaction.get_by_payment_id(session, "np-slow")
            self.assertEqual(tx.user_id, payer_id)
            self.assertEqual(tx.status, "PENDING")


class DrawWorkflowTestCase(LedgerTestCase):
    def test_create_draw_orders_prizes(self):
        with self.Session.begin() as session:
            draw = create_draw(
                session,
                title="Monthly",
                entry_price=Decimal("2"),
                draw_date=datetime.now(timezone.utc) + timedelta(days=30),
                prizes=[Decimal("100"), Decimal("25")],
                max_entries=500,
            )
            self.assertEqual([p.position for p in draw.prizes], [1, 2])
            self.assertEqual(draw.status, "UPCOMING")
            self.assertEqual(draw.current_entries, 0)

    def test_create_draw_validation(self):
        future = datetime.now(timezone.utc) + timedelta(days=1)
        with self.Session.begin() as session:
            with self.assertRaises(ValidationError):
                create_draw(session, "Bad", Decimal("0"), future, [Decimal("1")])
            with self.assertRaises(ValidationError):
                create_draw(session, "Bad", Decimal("1"), future, [Decimal("-1")])
            with self.assertRaises(ValidationError):
                create_draw(session, "Bad", Decimal("1"), future, [], max_entries=0)

    def test_activate_draw(self):
        draw_id = self.make_draw()
        with self.Session.begin() as session:
            self.assertEqual(activate_draw(session, draw_id).status, "ACTIVE")
        with self.Session.begin() as session:
            with self.assertRaises(StateError):
                activate_draw(session, draw_id)
            with self.assertRaises(NotFound):
                activate_draw(session, 12345)

    def test_draw_status_never_moves_backward(self):
        draw_id = self.make_draw()
        with self.Session.begin() as session:
            draw = session.get(Draw, draw_id)
            draw.advance_status("DRAWING")
            draw.advance_status("COMPLETED")
            for status in ("UPCOMING", "ACTIVE", "DRAWING", "BOGUS"):
                with self.assertRaises(StateError):
                    draw.advance_status(status)


if __name__ == "__main__":
    unittest.main()
