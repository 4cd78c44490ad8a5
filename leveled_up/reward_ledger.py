"""
Reward ledger: minutes of play time earned today, bounded by the daily cap.
"""
import logging
import time
from datetime import datetime
from typing import Callable, Optional, Dict, Any


logger = logging.getLogger(__name__)


class RewardLedger:
    """
    Running total of minutes earned today.

    The total never exceeds the daily maximum. It is kept in memory only and
    resets when a day check sees that the last earning happened on an earlier
    local calendar date.
    """

    def __init__(self, daily_max_minutes: int, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize an empty ledger.

        Args:
            daily_max_minutes: Cap on minutes that can be earned per day
            clock: Returns the current local time, injectable for tests
        """
        self._daily_max_minutes = daily_max_minutes
        self._clock = clock
        self.earned_minutes_today = 0
        self.last_earned_at: Optional[datetime] = None

    @property
    def daily_max_minutes(self) -> int:
        return self._daily_max_minutes

    def set_daily_max(self, daily_max_minutes: int) -> None:
        """Change the cap, trimming today's total if it now exceeds it."""
        self._daily_max_minutes = daily_max_minutes
        if self.earned_minutes_today > daily_max_minutes:
            logger.info(
                f"Earned minutes trimmed from {self.earned_minutes_today} to new cap {daily_max_minutes}"
            )
            self.earned_minutes_today = daily_max_minutes

    def reset_if_new_day(self) -> bool:
        """
        Reset today's total if the last earning was on another calendar day.

        Returns:
            True if the total was reset
        """
        if self.last_earned_at is None:
            return False

        today = self._clock().date()
        if self.last_earned_at.date() == today:
            return False

        previous = self.earned_minutes_today
        self.earned_minutes_today = 0
        logger.info(
            f"Reward ledger reset for new day {today.isoformat()} (was {previous} minutes)",
            extra={
                'event_type': 'ledger_day_reset',
                'previous_minutes': previous,
                'last_earned_day': self.last_earned_at.date().isoformat(),
                'timestamp': time.time()
            }
        )
        return True

    def add_earned_minutes(self, amount: int) -> int:
        """
        Credit minutes for today, capped at the daily maximum.

        Args:
            amount: Minutes earned by a passing quiz

        Returns:
            Minutes actually credited after capping
        """
        self.reset_if_new_day()

        before = self.earned_minutes_today
        self.earned_minutes_today = min(self._daily_max_minutes, before + amount)
        self.last_earned_at = self._clock()
        credited = self.earned_minutes_today - before

        logger.info(
            f"Credited {credited} of {amount} minutes, today {self.earned_minutes_today}/{self._daily_max_minutes}",
            extra={
                'event_type': 'ledger_minutes_added',
                'requested': amount,
                'credited': credited,
                'earned_today': self.earned_minutes_today,
                'daily_max': self._daily_max_minutes,
                'timestamp': time.time()
            }
        )
        return credited

    def remaining_minutes(self) -> int:
        return max(0, self._daily_max_minutes - self.earned_minutes_today)

    def has_headroom(self) -> bool:
        return self.remaining_minutes() > 0

    def is_capped(self) -> bool:
        return not self.has_headroom()

    def get_summary(self) -> Dict[str, Any]:
        return {
            'earned_minutes_today': self.earned_minutes_today,
            'daily_max_minutes': self._daily_max_minutes,
            'remaining_minutes': self.remaining_minutes(),
            'last_earned_at': self.last_earned_at
        }
