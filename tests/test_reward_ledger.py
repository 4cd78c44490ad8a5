"""
Unit tests for the reward ledger.
"""
import unittest
import logging
from datetime import datetime, timedelta

from leveled_up.reward_ledger import RewardLedger
from tests.test_fixtures import FakeClock


class TestRewardLedger(unittest.TestCase):
    """Test cases for minute accounting and the daily cap."""

    def setUp(self):
        self.clock = FakeClock(datetime(2024, 3, 14, 15, 0, 0))
        self.ledger = RewardLedger(60, self.clock)
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        logging.disable(logging.NOTSET)

    def test_new_ledger_is_empty(self):
        self.assertEqual(self.ledger.earned_minutes_today, 0)
        self.assertIsNone(self.ledger.last_earned_at)
        self.assertTrue(self.ledger.has_headroom())
        self.assertEqual(self.ledger.remaining_minutes(), 60)

    def test_add_earned_minutes_records_time(self):
        credited = self.ledger.add_earned_minutes(10)

        self.assertEqual(credited, 10)
        self.assertEqual(self.ledger.earned_minutes_today, 10)
        self.assertEqual(self.ledger.last_earned_at, self.clock.now)

    def test_earning_is_capped_at_daily_max(self):
        self.ledger.earned_minutes_today = 50
        self.ledger.last_earned_at = self.clock.now

        credited = self.ledger.add_earned_minutes(20)

        self.assertEqual(self.ledger.earned_minutes_today, 60)
        self.assertEqual(credited, 10)
        self.assertTrue(self.ledger.is_capped())
        self.assertFalse(self.ledger.has_headroom())

    def test_earning_at_cap_credits_nothing(self):
        self.ledger.add_earned_minutes(60)
        self.assertEqual(self.ledger.add_earned_minutes(5), 0)
        self.assertEqual(self.ledger.earned_minutes_today, 60)

    def test_reset_if_new_day(self):
        self.ledger.earned_minutes_today = 45
        self.ledger.last_earned_at = self.clock.now - timedelta(days=1)

        self.assertTrue(self.ledger.reset_if_new_day())
        self.assertEqual(self.ledger.earned_minutes_today, 0)

    def test_same_day_does_not_reset(self):
        self.ledger.add_earned_minutes(30)
        self.clock.advance(hours=8)

        self.assertFalse(self.ledger.reset_if_new_day())
        self.assertEqual(self.ledger.earned_minutes_today, 30)

    def test_reset_uses_calendar_date_not_elapsed_time(self):
        self.clock.now = datetime(2024, 3, 14, 23, 55, 0)
        self.ledger.add_earned_minutes(30)
        self.clock.advance(minutes=10)

        self.assertTrue(self.ledger.reset_if_new_day())
        self.assertEqual(self.ledger.earned_minutes_today, 0)

    def test_reset_without_history_is_noop(self):
        self.assertFalse(self.ledger.reset_if_new_day())

    def test_earning_on_new_day_starts_from_zero(self):
        self.ledger.add_earned_minutes(60)
        self.clock.advance(days=1)

        credited = self.ledger.add_earned_minutes(20)

        self.assertEqual(credited, 20)
        self.assertEqual(self.ledger.earned_minutes_today, 20)

    def test_lowering_cap_trims_total(self):
        self.ledger.add_earned_minutes(50)
        self.ledger.set_daily_max(30)

        self.assertEqual(self.ledger.daily_max_minutes, 30)
        self.assertEqual(self.ledger.earned_minutes_today, 30)

    def test_get_summary(self):
        self.ledger.add_earned_minutes(25)
        summary = self.ledger.get_summary()

        self.assertEqual(summary['earned_minutes_today'], 25)
        self.assertEqual(summary['daily_max_minutes'], 60)
        self.assertEqual(summary['remaining_minutes'], 35)


if __name__ == '__main__':
    unittest.main()
