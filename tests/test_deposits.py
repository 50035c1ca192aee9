import json
import threading
import unittest
from decimal import Decimal
from typing import Any

from drawledger.errors import NotFound, SignatureError, ValidationError
from drawledger.ledger import completed_deposit_count, handle_deposit_callback
from drawledger.ledger.deposits import parse_callback
from drawledger.models import LedgerTransaction, Wallet
from drawledger.payments.signature import sign_payload

from ledger_fixtures import IPN_SECRET, FileLedgerTestCase, LedgerTestCase


def callback_body(**fields: Any) -> bytes:
    return json.dumps(fields).encode()


class DepositReconcilerTestCase(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.user_id = self.make_user("depositor@example.com")

    def deliver(self, **fields: Any):
        fields.setdefault("order_id", f"{self.user_id}:tok123")
        raw = callback_body(**fields)
        with self.Session.begin() as session:
            return handle_deposit_callback(
                session, raw, sign_payload(raw, IPN_SECRET), self.settings
            )

    def deposit_tx(self, payment_id: str) -> LedgerTransaction:
        with self.Session() as session:
            return LedgerTransaction.get_by_payment_id(session, payment_id)

    def test_finished_callback_credits_once(self):
        first = self.deliver(payment_id="p-1", payment_status="finished", outcome_amount=12)
        replay = self.deliver(payment_id="p-1", payment_status="finished", outcome_amount=12)

        self.assertEqual(first.action, "credited")
        self.assertEqual(first.credited, Decimal("12"))
        self.assertEqual(replay.action, "noop")
        self.assertEqual(self.balance_of(self.user_id), Decimal("12"))
        self.assertEqual(self.deposit_tx("p-1").status, "COMPLETED")

    def test_partial_then_finished_credits_total(self):
        partial = self.deliver(
            payment_id="p-2", payment_status="partially_paid", actually_paid=5
        )
        self.assertEqual(partial.action, "partial")
        self.assertEqual(self.balance_of(self.user_id), Decimal("5"))
        self.assertEqual(self.deposit_tx("p-2").status, "PENDING")

        finished = self.deliver(
            payment_id="p-2", payment_status="finished", actually_paid=12
        )
        self.assertEqual(finished.credited, Decimal("7"))
        self.assertEqual(self.balance_of(self.user_id), Decimal("12"))
        self.assertEqual(self.deposit_tx("p-2").status, "COMPLETED")

    def test_completed_below_minimum_fails_without_credit(self):
        outcome = self.deliver(payment_id="p-3", payment_status="confirmed", pay_amount=2)

        self.assertEqual(outcome.action, "failed")
        self.assertEqual(self.balance_of(self.user_id), Decimal("0"))
        self.assertEqual(self.deposit_tx("p-3").status, "FAILED")

    def test_partial_below_minimum_credits_nothing(self):
        outcome = self.deliver(
            payment_id="p-4", payment_status="partially_paid", actually_paid=1
        )

        self.assertEqual(outcome.credited, Decimal("0"))
        self.assertEqual(self.balance_of(self.user_id), Decimal("0"))
        self.assertEqual(self.deposit_tx("p-4").status, "PENDING")

    def test_failed_status_marks_transaction_failed(self):
        outcome = self.deliver(payment_id="p-5", payment_status="expired", pay_amount=10)

        self.assertEqual(outcome.action, "failed")
        self.assertEqual(self.deposit_tx("p-5").status, "FAILED")
        self.assertEqual(self.balance_of(self.user_id), Decimal("0"))

    def test_unknown_status_is_ignored(self):
        outcome = self.deliver(payment_id="p-6", payment_status="waiting", pay_amount=10)

        self.assertEqual(outcome.action, "ignored")
        self.assertIsNone(self.deposit_tx("p-6"))

    def test_amount_resolution_prefers_outcome_amount(self):
        self.deliver(
            payment_id="p-7",
            payment_status="finished",
            outcome_amount=9,
            actually_paid=10,
            pay_amount=11,
            price_amount=12,
        )
        self.assertEqual(self.balance_of(self.user_id), Decimal("9"))

    def test_wallet_resolved_by_pay_address(self):
        with self.Session.begin() as session:
            Wallet.get_by_user_id(session, self.user_id).deposit_address = "addr-xyz-123"

        self.deliver(
            payment_id="p-8",
            payment_status="finished",
            pay_amount=10,
            pay_address="addr-xyz-123",
            order_id=None,
        )
        self.assertEqual(self.balance_of(self.user_id), Decimal("10"))

    def test_unmatched_payment_raises_not_found(self):
        with self.assertRaises(NotFound):
            self.deliver(
                payment_id="p-9",
                payment_status="finished",
                pay_amount=10,
                order_id="nobody",
            )

    def test_bad_signature_rejected(self):
        raw = callback_body(payment_id="p-10", payment_status="finished", pay_amount=10)
        with self.Session.begin() as session:
            with self.assertRaises(SignatureError):
                handle_deposit_callback(session, raw, "0" * 128, self.settings)
            with self.assertRaises(SignatureError):
                handle_deposit_callback(session, raw, None, self.settings)

    def test_signature_over_different_bytes_rejected(self):
        raw = callback_body(payment_id="p-11", payment_status="finished", pay_amount=10)
        tampered = raw.replace(b"10", b"99")
        with self.Session.begin() as session:
            with self.assertRaises(SignatureError):
                handle_deposit_callback(
                    session, tampered, sign_payload(raw, IPN_SECRET), self.settings
                )
        self.assertEqual(self.balance_of(self.user_id), Decimal("0"))

    def test_late_partial_after_finished_is_noop(self):
        self.deliver(payment_id="p-12", payment_status="finished", actually_paid=12)
        late = self.deliver(
            payment_id="p-12", payment_status="partially_paid", actually_paid=5
        )

        self.assertEqual(late.action, "noop")
        self.assertEqual(self.balance_of(self.user_id), Decimal("12"))
        self.assertEqual(self.deposit_tx("p-12").status, "COMPLETED")

    def test_out_of_order_partials_credit_the_final_total(self):
        credited = [
            self.deliver(
                payment_id="p-13", payment_status="partially_paid", actually_paid=paid
            ).credited
            for paid in (5, 9, 7)
        ]
        self.assertEqual(credited, [Decimal("5"), Decimal("4"), Decimal("0")])
        self.assertEqual(self.balance_of(self.user_id), Decimal("9"))

        finished = self.deliver(
            payment_id="p-13", payment_status="finished", actually_paid=12
        )
        self.assertEqual(finished.credited, Decimal("3"))
        self.assertEqual(self.balance_of(self.user_id), Decimal("12"))
        self.assertEqual(self.deposit_tx("p-13").credited_amount, Decimal("12"))

    def test_payload_replayed_many_times_credits_once(self):
        outcomes = [
            self.deliver(payment_id="p-14", payment_status="confirmed", pay_amount=15)
            for _ in range(5)
        ]

        self.assertEqual([o.action for o in outcomes], ["credited"] + ["noop"] * 4)
        self.assertEqual(self.balance_of(self.user_id), Decimal("15"))
        with self.Session() as session:
            self.assertEqual(len(LedgerTransaction.for_user(session, self.user_id)), 1)

    def test_failure_after_partial_credit_keeps_row_pending(self):
        self.deliver(payment_id="p-15", payment_status="partially_paid", actually_paid=5)
        failed = self.deliver(payment_id="p-15", payment_status="expired", actually_paid=5)

        self.assertEqual(failed.action, "failed")
        self.assertEqual(self.balance_of(self.user_id), Decimal("5"))
        tx = self.deposit_tx("p-15")
        self.assertEqual(tx.status, "PENDING")
        self.assertEqual(tx.credited_amount, Decimal("5"))
        self.assertIn("expired", tx.description)

        self.deliver(payment_id="p-15", payment_status="finished", actually_paid=8)
        self.assertEqual(self.balance_of(self.user_id), Decimal("8"))
        self.assertEqual(self.deposit_tx("p-15").status, "COMPLETED")

    def test_partial_after_failure_reopens_the_row(self):
        self.deliver(payment_id="p-16", payment_status="failed", pay_amount=10)
        self.deliver(payment_id="p-16", payment_status="partially_paid", actually_paid=6)

        tx = self.deposit_tx("p-16")
        self.assertEqual(tx.status, "PENDING")
        self.assertEqual(self.balance_of(self.user_id), Decimal("6"))

    def test_completed_amount_never_below_credited(self):
        self.deliver(payment_id="p-17", payment_status="partially_paid", actually_paid=9)
        finished = self.deliver(
            payment_id="p-17", payment_status="finished", actually_paid=6
        )

        self.assertEqual(finished.credited, Decimal("0"))
        tx = self.deposit_tx("p-17")
        self.assertEqual(tx.status, "COMPLETED")
        self.assertEqual(tx.amount, Decimal("9"))
        self.assertEqual(self.balance_of(self.user_id), Decimal("9"))

    def test_completed_below_minimum_after_partial_credit(self):
        self.deliver(payment_id="p-18", payment_status="partially_paid", actually_paid=5)
        self.deliver(payment_id="p-18", payment_status="finished", actually_paid=2)

        tx = self.deposit_tx("p-18")
        self.assertEqual(tx.status, "COMPLETED")
        self.assertEqual(tx.amount, Decimal("5"))
        self.assertEqual(self.balance_of(self.user_id), Decimal("5"))

    def test_malformed_body(self):
        with self.assertRaises(ValidationError):
            parse_callback(b"not json")
        with self.assertRaises(ValidationError):
            parse_callback(b'{"payment_status": "finished"}')


class ReferralBonusTestCase(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.referrer_id = self.make_user("referrer@example.com")
        self.referred_id = self.make_user("friend@example.com", referrer_id=self.referrer_id)

    def deliver(self, user_id: int, payment_id: str, amount: int):
        raw = callback_body(
            payment_id=payment_id,
            payment_status="finished",
            pay_amount=amount,
            order_id=f"{user_id}:tok",
        )
        with self.Session.begin() as session:
            return handle_deposit_callback(
                session, raw, sign_payload(raw, IPN_SECRET), self.settings
            )

    def test_bonus_paid_on_first_deposit_only(self):
        first = self.deliver(self.referred_id, "r-1", 10)
        second = self.deliver(self.referred_id, "r-2", 10)

        self.assertIsNotNone(first.referral_bonus)
        self.assertIsNone(second.referral_bonus)
        self.assertEqual(self.balance_of(self.referrer_id), Decimal("0.25"))
        self.assertEqual(self.balance_of(self.referred_id), Decimal("20"))

    def test_replayed_first_deposit_pays_bonus_once(self):
        self.deliver(self.referred_id, "r-1", 10)
        self.deliver(self.referred_id, "r-1", 10)

        self.assertEqual(self.balance_of(self.referrer_id), Decimal("0.25"))

    def test_below_minimum_deposit_pays_no_bonus(self):
        self.deliver(self.referred_id, "r-1", 1)
        self.assertEqual(self.balance_of(self.referrer_id), Decimal("0"))

        self.deliver(self.referred_id, "r-2", 10)
        self.assertEqual(self.balance_of(self.referrer_id), Decimal("0.25"))

    def test_user_without_referrer_pays_no_bonus(self):
        outcome = self.deliver(self.referrer_id, "r-1", 10)
        self.assertIsNone(outcome.referral_bonus)

    def test_bonus_transaction_tagged_with_depositor(self):
        self.deliver(self.referred_id, "r-1", 10)
        with self.Session() as session:
            txs = LedgerTransaction.for_user(session, self.referrer_id)
            self.assertEqual(len(txs), 1)
            self.assertEqual(txs[0].type, "REFERRAL_BONUS")
            self.assertEqual(txs[0].referred_user_id, self.referred_id)
            self.assertEqual(completed_deposit_count(session, self.referred_id), 1)


class ConcurrentFirstDepositTestCase(FileLedgerTestCase):
    """Two first deposits of one referred user completing at the same time."""

    def test_only_one_referral_bonus(self):
        referrer_id = self.make_user("referrer@example.com")
        referred_id = self.make_user("friend@example.com", referrer_id=referrer_id)
        errors: list[Exception] = []
        start = threading.Barrier(2)

        def deliver(payment_id: str):
            raw = callback_body(
                payment_id=payment_id,
                payment_status="finished",
                pay_amount=10,
                order_id=f"{referred_id}:{payment_id}",
            )
            start.wait()
            try:
                with self.Session.begin() as session:
                    handle_deposit_callback(
                        session, raw, sign_payload(raw, IPN_SECRET), self.settings
                    )
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=deliver, args=(pid,)) for pid in ("c-1", "c-2")
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(self.balance_of(referred_id), Decimal("20"))
        self.assertEqual(self.balance_of(referrer_id), Decimal("0.25"))
        with self.Session() as session:
            bonuses = [
                tx
                for tx in LedgerTransaction.for_user(session, referrer_id)
                if tx.type == "REFERRAL_BONUS"
            ]
            self.assertEqual(len(bonuses), 1)
            self.assertEqual(completed_deposit_count(session, referred_id), 2)


if __name__ == "__main__":
    unittest.main()
