import random
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from drawledger.errors import (
    AlreadyCompleted,
    InsufficientEntries,
    NoEntries,
    NoPrizesConfigured,
    NotCompleted,
    NotFound,
    NotYetDue,
    ValidationError,
)
from drawledger.models import Draw, LedgerTransaction, User, Winner
from drawledger.prize_draw import (
    ALGORITHM_NAME,
    draw_results,
    pick_distinct,
    secure_shuffle,
)
from drawledger.tickets import enter_draw
from drawledger.workflows import execute_draw

from ledger_fixtures import LedgerTestCase

DRAW_DATE = datetime(2030, 1, 1, tzinfo=timezone.utc)
BEFORE = DRAW_DATE - timedelta(days=1)
AFTER = DRAW_DATE + timedelta(minutes=5)


class ShuffleHelpersTestCase(unittest.TestCase):
    def test_shuffle_is_a_permutation(self):
        items = list(range(50))
        shuffled = secure_shuffle(items)
        self.assertEqual(sorted(shuffled), items)
        self.assertEqual(items, list(range(50)))

    def test_shuffle_uses_given_source(self):
        # Always swapping with index 0 rotates the list left by one.
        self.assertEqual(secure_shuffle([1, 2, 3, 4], lambda n: 0), [2, 3, 4, 1])

    def test_pick_distinct_skips_repeated_keys(self):
        items = [("a", 1), ("a", 2), ("b", 3), ("c", 4)]
        picked = pick_distinct(items, 2, key=lambda x: x[0])
        self.assertEqual(picked, [("a", 1), ("b", 3)])

    def test_pick_distinct_stops_when_keys_run_out(self):
        items = [("a", 1), ("a", 2)]
        self.assertEqual(len(pick_distinct(items, 3, key=lambda x: x[0])), 1)


class SettlementTestCase(LedgerTestCase):
    def buy(self, user_id: int, draw_id: int, quantity: int):
        with self.Session.begin() as session:
            user = session.get(User, user_id)
            enter_draw(session, user, draw_id, quantity, self.settings, now=BEFORE)

    def settle(self, draw_id: int, winner_count=None, now=AFTER, seed: int = 7):
        with self.Session.begin() as session:
            result = execute_draw(
                session,
                draw_id,
                winner_count,
                now=now,
                randbelow=random.Random(seed).randrange,
            )
            return result

    def setup_draw(self, prizes=("50", "20", "10")):
        draw_id = self.make_draw(prizes=prizes, draw_date=DRAW_DATE)
        users = [self.make_user(f"p{i}@example.com", Decimal("10")) for i in range(4)]
        for user_id, qty in zip(users, (5, 1, 3, 2)):
            self.buy(user_id, draw_id, qty)
        return draw_id, users

    def test_winners_are_distinct_and_paid(self):
        draw_id, users = self.setup_draw()

        result = self.settle(draw_id)

        winner_ids = [w.user_id for w in result.winners]
        self.assertEqual(len(winner_ids), 3)
        self.assertEqual(len(set(winner_ids)), 3)
        self.assertEqual([w.position for w in result.winners], [1, 2, 3])
        self.assertEqual(
            [w.prize_amount for w in result.winners],
            [Decimal("50"), Decimal("20"), Decimal("10")],
        )
        self.assertEqual(result.total_paid, Decimal("80"))

        with self.Session() as session:
            draw = session.get(Draw, draw_id)
            self.assertEqual(draw.status, "COMPLETED")
            self.assertIsNotNone(draw.completed_at)
            self.assertEqual(draw.settlement_meta["algorithm"], ALGORITHM_NAME)
            self.assertEqual(draw.settlement_meta["entryCount"], 11)
            self.assertEqual(draw.settlement_meta["participantCount"], 4)
            paid = sum(
                (
                    tx.amount
                    for uid in users
                    for tx in LedgerTransaction.for_user(session, uid)
                    if tx.type == "PRIZE_WIN"
                ),
                Decimal("0"),
            )
            self.assertEqual(paid, Decimal("80"))

        spent = {users[0]: 5, users[1]: 1, users[2]: 3, users[3]: 2}
        prizes = {w.user_id: w.prize_amount for w in result.winners}
        for uid in users:
            expected = Decimal("10") - spent[uid] + prizes.get(uid, Decimal("0"))
            self.assertEqual(self.balance_of(uid), expected)

    def test_target_larger_than_distinct_users(self):
        draw_id = self.make_draw(prizes=("5", "3"), draw_date=DRAW_DATE)
        user_id = self.make_user("solo@example.com", Decimal("10"))
        self.buy(user_id, draw_id, 4)

        result = self.settle(draw_id, winner_count=3)

        self.assertEqual(len(result.winners), 1)
        self.assertEqual(result.winners[0].user_id, user_id)
        self.assertEqual(result.total_paid, Decimal("5"))

    def test_winners_beyond_prize_positions_get_no_amount(self):
        draw_id, _ = self.setup_draw(prizes=("50",))

        result = self.settle(draw_id, winner_count=3)

        self.assertEqual([w.position for w in result.winners], [1, 2, 3])
        self.assertEqual(result.winners[0].prize_amount, Decimal("50"))
        self.assertIsNone(result.winners[1].prize_amount)
        self.assertIsNone(result.winners[2].prize_amount)
        self.assertEqual(result.total_paid, Decimal("50"))

    def test_zero_prize_position_records_winner_without_payout(self):
        draw_id, users = self.setup_draw(prizes=("0",))

        result = self.settle(draw_id)

        self.assertEqual(result.total_paid, Decimal("0"))
        with self.Session() as session:
            txs = LedgerTransaction.for_user(session, result.winners[0].user_id)
            self.assertNotIn("PRIZE_WIN", [t.type for t in txs])

    def test_settlement_preconditions(self):
        with self.assertRaises(NotFound):
            self.settle(999)

        draw_id = self.make_draw(draw_date=DRAW_DATE)
        with self.assertRaises(NotYetDue):
            self.settle(draw_id, now=BEFORE)
        with self.assertRaises(NoEntries):
            self.settle(draw_id)

        no_prizes = self.make_draw(prizes=(), draw_date=DRAW_DATE)
        user_id = self.make_user("a@example.com", Decimal("10"))
        self.buy(user_id, no_prizes, 1)
        with self.assertRaises(NoPrizesConfigured):
            self.settle(no_prizes)

        self.buy(user_id, draw_id, 1)
        with self.assertRaises(ValidationError):
            self.settle(draw_id, winner_count=0)
        with self.assertRaises(InsufficientEntries):
            self.settle(draw_id, winner_count=2)

        with self.Session() as session:
            self.assertEqual(session.get(Draw, draw_id).status, "UPCOMING")

    def test_second_settlement_rejected(self):
        draw_id, _ = self.setup_draw()
        self.settle(draw_id)

        with self.assertRaises(AlreadyCompleted):
            self.settle(draw_id)

    def test_results_readable_only_after_settlement(self):
        draw_id, users = self.setup_draw()
        with self.Session() as session:
            with self.assertRaises(NotCompleted):
                draw_results(session, draw_id)
            with self.assertRaises(NotFound):
                draw_results(session, 404)

        settled = self.settle(draw_id)

        with self.Session() as session:
            results = draw_results(session, draw_id)
            self.assertEqual(results.participant_count, 11)
            self.assertEqual([w.position for w in results.winners], [1, 2, 3])
            self.assertEqual(
                [w.user_id for w in results.winners],
                [w.user_id for w in settled.winners],
            )

    def test_failure_mid_payout_rolls_everything_back(self):
        draw_id, users = self.setup_draw()
        balances = {uid: self.balance_of(uid) for uid in users}

        with patch(
            "drawledger.ledger.balance.credit", side_effect=RuntimeError("store down")
        ):
            with self.assertRaises(RuntimeError):
                self.settle(draw_id)

        with self.Session() as session:
            draw = session.get(Draw, draw_id)
            self.assertEqual(draw.status, "UPCOMING")
            self.assertIsNone(draw.completed_at)
            self.assertEqual(session.query(Winner).filter_by(draw_id=draw_id).count(), 0)
        for uid in users:
            self.assertEqual(self.balance_of(uid), balances[uid])

    def test_every_participant_can_win(self):
        draw_id, users = self.setup_draw(prizes=("1",))
        seen = set()
        for seed in range(200):
            with self.Session() as session:
                winners = execute_draw(
                    session, draw_id, now=AFTER, randbelow=random.Random(seed).randrange
                ).winners
                seen.add(winners[0].user_id)
                session.rollback()
        self.assertEqual(seen, set(users))


if __name__ == "__main__":
    unittest.main()
