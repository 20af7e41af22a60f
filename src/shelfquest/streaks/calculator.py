"""Consecutive-day reading streaks computed from activity dates."""

from datetime import date
from typing import Iterable, Optional, Union

DateLike = Union[date, str]


def _as_date(value: DateLike) -> date:
    if isinstance(value, date):
        return value
    # Stored dates are ISO strings, possibly full timestamps
    return date.fromisoformat(value[:10])


class StreakCalculator:
    """Derives current and longest streaks from a set of activity dates.

    Several activities on the same day count as one day.
    """

    def __init__(self, dates: Iterable[DateLike], today: Optional[date] = None):
        """Initialize the calculator.

        Args:
            dates: Activity dates (date objects or ISO strings)
            today: Reference day for the current streak (default: today)
        """
        self.days = {_as_date(d) for d in dates}
        self.today = today or date.today()

    def current_streak(self) -> int:
        """Count consecutive days ending today or yesterday.

        Walks backwards from today; each step may be 0 or 1 day, so a streak
        whose last activity was yesterday is still alive.
        """
        streak = 0
        cursor = self.today

        for day in sorted(self.days, reverse=True):
            if day > self.today:
                continue
            gap = (cursor - day).days
            if gap > 1:
                break
            streak += 1
            cursor = day

        return streak

    def longest_streak(self) -> int:
        """Longest run of consecutive days ever recorded."""
        if not self.days:
            return 0

        ordered = sorted(self.days)
        longest = 1
        running = 1

        for prev, curr in zip(ordered, ordered[1:]):
            if (curr - prev).days == 1:
                running += 1
                longest = max(longest, running)
            else:
                running = 1

        return longest
